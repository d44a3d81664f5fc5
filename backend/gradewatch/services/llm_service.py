import json
import logging

import openai
from pydantic import BaseModel

from gradewatch.core.config import settings

logger = logging.getLogger(__name__)

SNAPSHOT_SYSTEM_PROMPT = """
You are an experienced school analyst and pedagogical adviser. Analyse the grade
data of a snapshot and write an insightful report for principals, teachers and
study counsellors. Be constructive, highlight both successes and challenges and
give concrete, actionable recommendations.

Structure:

### PART 1: SUMMARY
- Key figures: students with grades, F-grades (and F-warnings separately),
  pass rate, improvements when available.
- Overall assessment in 2-3 sentences, using one of:
  - 🟢 POSITIVE: pass rate above 85% and no worrying patterns
  - 🟡 NEEDS ATTENTION: pass rate 70-85% or worrying patterns
  - 🔴 CRITICAL: pass rate below 70% or many students with 3+ F
- Three strengths and three challenges.

### PART 2: ANALYSIS
- Classes ranked by share of F-grades (best 3 and worst 3).
- The 5 courses with most F-grades and any visible pattern.
- Students at risk: how many have 1 F, 2 F, 3+ F.
- Improvements and positive trends.

### PART 3: RECOMMENDATIONS
3-5 concrete actions (acute, preventive, long term), then one encouraging
closing sentence.

Rules: never mention individual students, focus on aggregated patterns, say
"based on available data" when data is limited, keep it around 800-1200 words,
use ### and #### headings and bullet lists.
"""


class ClassBreakdown(BaseModel):
    class_name: str
    student_count: int
    f_count: int
    f_warning_count: int


class CourseBreakdown(BaseModel):
    course_code: str
    course_name: str
    f_count: int
    f_warning_count: int


class RiskBuckets(BaseModel):
    with_1f: int
    with_2f: int
    with_3plus_f: int


class NarrativeStats(BaseModel):
    total_students: int
    total_grades: int
    total_f_grades: int
    total_f_warnings: int
    pass_rate: float | None = None
    total_improvements: int | None = None


class NarrativePayload(BaseModel):
    name: str
    quarter_name: str
    snapshot_date: str
    stats: NarrativeStats
    class_breakdown: list[ClassBreakdown]
    course_breakdown: list[CourseBreakdown]
    students_at_risk: RiskBuckets


def build_snapshot_prompt(payload: NarrativePayload) -> str:
    classes = sorted(
        payload.class_breakdown,
        key=lambda c: c.f_count / max(c.student_count, 1),
        reverse=True,
    )[:15]
    courses = sorted(payload.course_breakdown, key=lambda c: c.f_count, reverse=True)[:15]

    class_table = "\n".join(
        f"- {c.class_name}: {c.student_count} students, {c.f_count} F-grades, "
        f"{c.f_warning_count} F-warnings"
        for c in classes
    )
    course_table = "\n".join(
        f"- {c.course_code} ({c.course_name}): {c.f_count} F-grades, {c.f_warning_count} F-warnings"
        for c in courses
    )
    stats = payload.stats
    pass_rate = f"{stats.pass_rate:.1f}%" if stats.pass_rate is not None else "no graded records"
    improvements = (
        f"- Improvements (F -> pass): {stats.total_improvements}\n"
        if stats.total_improvements is not None
        else ""
    )

    return f"""
Analyse the following snapshot.

## Basics
- Snapshot: {payload.name}
- Quarter: {payload.quarter_name}
- Date: {payload.snapshot_date}

## Totals
- Students with grades: {stats.total_students}
- Registered grades: {stats.total_grades}
- F-grades: {stats.total_f_grades}
- F-warnings: {stats.total_f_warnings}
- Pass rate: {pass_rate}
{improvements}
## Students at risk
- With 1 F-grade: {payload.students_at_risk.with_1f}
- With 2 F-grades: {payload.students_at_risk.with_2f}
- With 3+ F-grades: {payload.students_at_risk.with_3plus_f}

## Per class (by share of F)
{class_table or "- no class data"}

## Per course (by number of F)
{course_table or "- no course data"}

Write the complete report following your instructions.
"""


class LLMService:
    def __init__(self):
        self.client = None
        if settings.OPENAI_API_KEY:
            self.client = openai.OpenAI(api_key=settings.OPENAI_API_KEY)
        else:
            logger.warning("OPENAI_API_KEY not set. LLMService will fail if called.")

    def generate_snapshot_analysis(self, payload: NarrativePayload) -> str:
        """
        Free-text analysis of a snapshot's aggregate statistics.
        """
        if not self.client:
            raise ValueError("LLM Client not configured (missing OPENAI_API_KEY)")

        logger.debug("Snapshot narrative payload: %s", json.dumps(payload.model_dump(), ensure_ascii=False))
        response = self.client.chat.completions.create(
            model=settings.LLM_MODEL_NAME,
            messages=[
                {"role": "system", "content": SNAPSHOT_SYSTEM_PROMPT},
                {"role": "user", "content": build_snapshot_prompt(payload)},
            ],
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
        )

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise ValueError("LLM returned an empty analysis")
        return content.strip()
