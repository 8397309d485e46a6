"""
Prompt templates for page-by-page exam question extraction.

Two call types:
1. Structure: shared descriptions, multi-page questions, visible numbers
2. Extraction: final question records for one page

The contextual (two-pass) and single-pass extraction prompts are assembled
from the same rule blocks below so they ask for the same record shape.
"""

from typing import Optional, Sequence

from .models import PageStructuralFindings, SharedDescription

# =============================================================================
# STRUCTURE ANALYSIS
# =============================================================================

STRUCTURE_PROMPT_HEADER = "Analyze this exam page to identify structural elements."

STRUCTURE_PROMPT = STRUCTURE_PROMPT_HEADER + """ Focus on:

1. SHARED DESCRIPTIONS: Look for text like "Description for the following X questions:", "For questions X-Y:" or "Consider the following for next questions:"
2. MULTI-PAGE QUESTIONS: Identify if any question starts but doesn't complete on this page
3. QUESTION NUMBERS: List all question numbers visible on this page

Return JSON with this structure:
{
  "sharedDescription": "Full text of any shared description found",
  "hasMultiPageQuestion": true,
  "questionNumbers": ["17", "18", "19"]
}

If no shared description exists, set sharedDescription to null."""


# =============================================================================
# SHARED RULE BLOCKS
# =============================================================================

EXTRACTION_PROMPT_HEADER = "You are an EXPERT question extraction system for competitive exam papers."

CORE_RULES = """CRITICAL EXTRACTION RULES:
1. Extract questions EXACTLY as they appear - preserve every word, symbol and formula
2. IGNORE general exam instructions, page headers/footers and other non-question text
3. Convert math to LaTeX: $...$ for inline, $$...$$ for display math
4. Question types: MCQ (single answer), MSQ (multiple answers), NAT (numerical), Subjective (descriptive)
5. Write the question statement and the options separately, options in display order
6. A question with parts is split into one question per part, numbered 11(A), 11(B), 11(C)
7. If a page has only instructions or no questions, return an empty array []"""

SHARED_DESCRIPTION_RULES = """SHARED DESCRIPTION HANDLING:
- If a description applies to several questions, include the FULL description in question_statement of EACH of them
- Example: for "Description for questions 17-18: [text]", both Q17 and Q18 start with [text]"""

VISUAL_RULES = """DIAGRAM/TABLE HANDLING:
- NEVER skip a question because it has a diagram or table
- Describe charts, graphs, tables, Venn diagrams and figures in detail inside question_statement
- Include table data in a structured textual form
- If a visual element cannot be captured in text, set has_image to true and give image_description"""

CONTINUATION_RULES = """MULTI-PAGE QUESTION HANDLING:
- If a question starts but doesn't end on this page, extract what is visible and set spans_multiple_pages to true
- If a question continues from the previous page, set is_continuation to true"""

JSON_RULES = r"""JSON FORMAT REQUIREMENTS:
- Use double backslashes (\\) for ALL LaTeX commands, e.g. "$\\frac{1}{2}$"
- Escape quotes inside strings as \"
- No raw line breaks inside strings (use \n)
- Return ONLY the JSON array, no explanations"""

RESPONSE_FORMAT = """RESPONSE FORMAT:
[
  {{
    "question_number": "17",
    "question_type": "MCQ",
    "question_statement": "Shared description + question statement + diagram/table description",
    "options": ["Option A", "Option B", "Option C", "Option D"],
    "confidence_score": 0.95,
    "is_continuation": false,
    "spans_multiple_pages": false,
    "has_image": false,
    "image_description": null,
    "page_number": {page_number}
  }}
]"""


# =============================================================================
# CONTEXT BLOCKS
# =============================================================================


def build_shared_description_context(descriptions: Sequence[SharedDescription]) -> str:
    if not descriptions:
        return "No shared description found for this page."
    lines = []
    for description in descriptions:
        scope = ""
        if description.question_numbers:
            numbers = ", ".join(str(n) for n in description.question_numbers)
            scope = f" (questions {numbers})"
        lines.append(f'SHARED DESCRIPTION from page {description.page_number}{scope}: "{description.text}"')
    return "\n".join(lines)


def build_findings_context(findings: Optional[PageStructuralFindings]) -> str:
    if findings is None:
        return ""
    lines = []
    if findings.question_numbers:
        lines.append(f"Questions visible on this page: {', '.join(findings.question_numbers)}")
    if findings.has_multi_page_question:
        lines.append("A question on this page continues onto the next page: mark it spans_multiple_pages.")
    return "\n".join(lines)


# =============================================================================
# PROMPT BUILDERS
# =============================================================================


def get_structure_prompt() -> str:
    return STRUCTURE_PROMPT


def get_contextual_extraction_prompt(
    page_number: int,
    shared_descriptions: Sequence[SharedDescription] = (),
    findings: Optional[PageStructuralFindings] = None,
    recent_questions: str = "",
) -> str:
    """
    Prompt for the extraction call of the two-pass strategy.

    Args:
        page_number: Page being extracted (1-indexed)
        shared_descriptions: Descriptions that apply to this page
        findings: Structural findings for this page
        recent_questions: Rendered RecentQuestionWindow
    """
    sections = [
        EXTRACTION_PROMPT_HEADER + " Extract ALL questions on this page with ABSOLUTE PRECISION.",
        CORE_RULES,
        SHARED_DESCRIPTION_RULES + "\n" + build_shared_description_context(shared_descriptions),
        VISUAL_RULES,
        CONTINUATION_RULES,
    ]

    findings_context = build_findings_context(findings)
    if findings_context:
        sections.append("PAGE STRUCTURE:\n" + findings_context)
    if recent_questions:
        sections.append("CONTEXT FROM PREVIOUS QUESTIONS:\n" + recent_questions)

    sections.append(JSON_RULES)
    sections.append(RESPONSE_FORMAT.format(page_number=page_number))
    return "\n\n".join(sections)


def get_single_pass_prompt(
    page_number: int,
    memory_context: str = "",
    previous_context: str = "",
    recent_questions: str = "",
) -> str:
    """
    Prompt for the single-pass strategy.

    Without a structural pass the model finds shared descriptions itself;
    memory_context and previous_context carry what earlier pages said.
    """
    sections = [
        EXTRACTION_PROMPT_HEADER + " Extract ONLY actual questions with ABSOLUTE PRECISION.",
        CORE_RULES,
        SHARED_DESCRIPTION_RULES,
        VISUAL_RULES,
        CONTINUATION_RULES
        + "\n- COMBINE a question continued from the previous page into ONE complete question",
    ]

    if memory_context:
        sections.append("MEMORY CONTEXT FROM PREVIOUS PAGES:\n" + memory_context)
    if previous_context:
        sections.append("PREVIOUS PAGE CONTEXT:\n" + previous_context)
    if recent_questions:
        sections.append("CONTEXT FROM PREVIOUS QUESTIONS:\n" + recent_questions)

    sections.append(JSON_RULES)
    sections.append(RESPONSE_FORMAT.format(page_number=page_number))
    return "\n\n".join(sections)
