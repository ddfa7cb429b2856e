"""Markdown + LaTeX rendering for question text, options and explanations.

Math is left in place for MathJax to typeset in the browser; the server only
turns markdown into HTML so every client shows the same markup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import html

from markdown_it import MarkdownIt

from exam_app.core.models import Exam, Question

_MATHJAX_SCRIPT = "https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-mml-chtml.js"


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Converts markdown-with-math into HTML fragments or full documents."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        sanitized = (markdown_text or "").strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)

    def render_inline(self, markdown_text: str) -> str:
        """Render a single-line snippet such as an option label without a <p> wrapper."""
        return self._markdown.renderInline((markdown_text or "").strip())

    def render_question(self, question: Question) -> dict[str, object]:
        return {
            "question_html": self.render_fragment(question.question_text),
            "options_html": [self.render_inline(option) for option in question.options],
        }

    def render_exam_document(self, exam: Exam, show_answers: bool = False) -> str:
        """Printable HTML page for a whole exam, used for teacher previews."""
        parts = [f"<h1>{html.escape(exam.title)}</h1>"]
        if exam.instructions:
            parts.append(self.render_fragment(exam.instructions))
        for number, question in enumerate(exam.questions, start=1):
            parts.append(f'<section class="question"><h2>Question {number} ({question.points} pt)</h2>')
            parts.append(self.render_fragment(question.question_text))
            parts.append("<ol type=\"A\">")
            for index, option in enumerate(question.options):
                marker = ' class="correct"' if show_answers and index == question.correct_option_index else ""
                parts.append(f"<li{marker}>{self.render_inline(option)}</li>")
            parts.append("</ol>")
            if show_answers and question.explanation:
                parts.append(self.render_fragment(question.explanation))
            parts.append("</section>")
        return self.wrap_with_mathjax("\n".join(parts), title=exam.title)

    def wrap_with_mathjax(self, body_html: str, title: str = "ExamHall") -> str:
        return f"""<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"utf-8\" />
    <title>{html.escape(title)}</title>
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />
    <style>
      body {{ font-family: 'Segoe UI', system-ui, sans-serif; margin: 0 auto; padding: 1.5rem; max-width: 52rem; line-height: 1.5; }}
      .question {{ margin-bottom: 1.5rem; }}
      .correct {{ font-weight: 600; color: #15803d; }}
    </style>
    <script>
      window.MathJax = {{ tex: {{ inlineMath: [['$','$']], displayMath: [['$$','$$']] }}, svg: {{ fontCache: 'global' }} }};
    </script>
    <script defer src=\"{_MATHJAX_SCRIPT}\"></script>
  </head>
  <body>
{body_html}
  </body>
</html>"""


renderer = MarkdownMathRenderer()
# Shared instance; MarkdownIt is safe for concurrent read-only renders.
