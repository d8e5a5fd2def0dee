"""
Prompt softening and trimming tests.
"""
from storybook.ai_generation import prepare_prompt, sanitize_prompt, trim_prompt_to_limit


class TestSanitizePrompt:
    def test_replaces_flagged_terms(self):
        text = "A violent storm where nobody will hurt the puppy"
        assert sanitize_prompt(text) == "A gentle storm where nobody will interact with the puppy"

    def test_is_case_insensitive(self):
        assert sanitize_prompt("GRAPHIC details and a Weapon") == "gentle details and a interact with"

    def test_sanitizing_twice_equals_once(self):
        text = "An explicit, graphic scene with a weapon that could harm or kill"
        once = sanitize_prompt(text)
        assert sanitize_prompt(once) == once

    def test_empty_values(self):
        assert sanitize_prompt("") == ""
        assert sanitize_prompt(None) == ""


class TestTrimPrompt:
    def test_short_prompt_is_untouched(self):
        prompt = "Head\n\nBody"
        assert trim_prompt_to_limit(prompt, 100) == prompt

    def test_result_fits_and_keeps_head(self):
        head = "Create an illustration for page 2 of a children's story-book."
        filler = "\n\n".join(f"Filler section {index} " + "x" * 80 for index in range(30))
        prompt = f"{head}\n\n{filler}"

        trimmed = trim_prompt_to_limit(prompt, 500)

        assert len(trimmed) <= 500
        assert trimmed.startswith(head)

    def test_priority_sections_survive_before_normal_ones(self):
        head = "Head section"
        normal = "Ordinary details " + "y" * 150
        priority = "CHARACTER CONSISTENCY: same red hair in every image"
        prompt = "\n\n".join([head, normal, normal + " again", priority])

        trimmed = trim_prompt_to_limit(prompt, 120)

        assert priority in trimmed
        assert "Ordinary details" not in trimmed
        assert len(trimmed) <= 120

    def test_oversized_head_is_cut(self):
        prompt = "z" * 300 + "\n\nrest"
        assert trim_prompt_to_limit(prompt, 100) == "z" * 100

    def test_prepare_prompt_sanitizes_then_trims(self):
        prompt = "A violent dragon\n\n" + "w" * 500
        prepared = prepare_prompt(prompt, 50)
        assert prepared == "A gentle dragon"
