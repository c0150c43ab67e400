"""Stage instructions passed to the analysis tool.

No runtime logic, pure data. ``{user_prompt}`` is replaced with the job's
free-text prompt (empty string when the job has none).
"""

# ---------------------------------------------------------------------------
# Stage names (also the --stage argument and the log file name)
# ---------------------------------------------------------------------------

EXTRACT = "extract"
ANALYZE_RELATIONSHIPS = "analyze-relationships"
ORDER = "order"
GENERATE_CHAPTERS = "generate-chapters"
REVIEW_CHAPTERS = "review-chapters"
GENERATE_TUTORIALS = "generate-tutorials"

# ---------------------------------------------------------------------------
# Instructions
# ---------------------------------------------------------------------------

STAGE_INSTRUCTIONS: dict[str, str] = {
    EXTRACT: (
        "Identify the 5 to 10 core abstractions of this codebase. For each one give "
        "a name, a short beginner-friendly description and the files that implement it. "
        "Write the result as YAML to step1_abstractions.yaml in the output directory."
    ),
    ANALYZE_RELATIONSHIPS: (
        "Read step1_abstractions.yaml. Summarize the project in a few sentences and list "
        "how the abstractions interact (from, to, label). "
        "Write the result as YAML to step2_relationships.yaml."
    ),
    ORDER: (
        "Read step1_abstractions.yaml and step2_relationships.yaml. Decide the order in "
        "which a newcomer should learn the abstractions, foundational concepts first. "
        "Write the ordered list as YAML to step3_order.yaml."
    ),
    GENERATE_CHAPTERS: (
        "Write one markdown chapter per abstraction, following step3_order.yaml. "
        "Start each file with a level-1 heading holding the chapter title and name it "
        "<NN>_<slug>.md inside chapters/."
    ),
    REVIEW_CHAPTERS: (
        "Review every chapter in chapters/ for accuracy against the source code, clarity "
        "and consistent cross-references. Write the corrected chapters, same file names, "
        "to reviewed-chapters/."
    ),
    GENERATE_TUTORIALS: (
        "Using the reviewed chapters, write hands-on tutorials that walk through real "
        "tasks in this codebase step by step. Write one markdown file per tutorial to tutorials/."
    ),
}

USER_PROMPT_SUFFIX = "\n\nAdditional instructions from the requester:\n{user_prompt}"


def build_stage_prompt(stage: str, user_prompt: str = "") -> str:
    """Instruction text for one stage, with the job's own prompt appended."""
    text = STAGE_INSTRUCTIONS[stage]
    if user_prompt and user_prompt.strip():
        text += USER_PROMPT_SUFFIX.format(user_prompt=user_prompt.strip())
    return text
