from planqa.prompts.loader import PromptLoader

__all__ = ["PromptLoader"]
