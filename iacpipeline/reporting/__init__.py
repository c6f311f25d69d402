"""Annotation delivery and report rendering."""

from .annotations import (
    AnnotationDispatcher,
    AnnotationSink,
    ConsoleSink,
    FileReportSink,
    GitHubCommentSink,
)
from .comments import (
    render_cost_comment,
    render_findings_comment,
    render_pipeline_summary,
    render_plan_comment,
)
from .sarif import build_sarif

__all__ = [
    "AnnotationDispatcher",
    "AnnotationSink",
    "ConsoleSink",
    "FileReportSink",
    "GitHubCommentSink",
    "render_cost_comment",
    "render_findings_comment",
    "render_pipeline_summary",
    "render_plan_comment",
    "build_sarif",
]
