"""
Prompt Management Module

Loads LLM prompt templates from the .txt files next to this module so prompt
wording can change without touching code.
"""

from __future__ import annotations

from pathlib import Path

PROMPTS_DIR = Path(__file__).parent


class PromptLoader:
    """Load and cache prompt templates from files"""

    def __init__(self):
        self._cache = {}

    def load_prompt(self, prompt_name: str) -> str:
        """
        Load a prompt template from file.

        Args:
            prompt_name: Name of the prompt file (without .txt extension)

        Returns:
            Prompt template string
        """
        if prompt_name not in self._cache:
            prompt_path = PROMPTS_DIR / f"{prompt_name}.txt"

            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

            with open(prompt_path, encoding="utf-8") as f:
                self._cache[prompt_name] = f.read()

        return self._cache[prompt_name]

    def render(self, prompt_name: str, **kwargs) -> str:
        return self.load_prompt(prompt_name).format(**kwargs)


_loader = PromptLoader()


def render_prompt(prompt_name: str, **kwargs) -> str:
    """Render a prompt template with variables injected (convenience function)"""
    return _loader.render(prompt_name, **kwargs)
