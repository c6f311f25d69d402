"""
Annotation delivery for pipeline stages.

Annotations are a side channel: a stage hands them to the dispatcher, the
dispatcher routes them to the sinks registered for their target, and any
delivery failure is logged without touching pipeline status.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from ..core.credentials import CredentialProvider, EnvironmentCredentialProvider
from ..core.errors import AnnotationFailure
from ..core.interfaces import Annotation, AnnotationTarget


logger = logging.getLogger(__name__)


class AnnotationSink(ABC):
    """Abstract base class for annotation sinks."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def send(self, annotation: Annotation) -> None:
        """Deliver an annotation. Raises AnnotationFailure on failure."""
        pass


class GitHubCommentSink(AnnotationSink):
    """Posts annotations as comments on a GitHub pull request."""

    def __init__(self, repository: str, pull_request: int, token_name: str = "GITHUB_TOKEN",
                 credentials: Optional[CredentialProvider] = None,
                 api_url: str = "https://api.github.com", timeout: int = 30):
        super().__init__("github")
        self.repository = repository
        self.pull_request = pull_request
        self.token_name = token_name
        self.credentials = credentials or EnvironmentCredentialProvider()
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def comments_url(self) -> str:
        return f"{self.api_url}/repos/{self.repository}/issues/{self.pull_request}/comments"

    def send(self, annotation: Annotation) -> None:
        """Post the annotation body to the pull request."""
        token = self.credentials.resolve(self.token_name)
        if not token:
            raise AnnotationFailure(f"Credential {self.token_name} is not available")

        body = annotation.text
        if annotation.title:
            body = f"## {annotation.title}\n\n{body}"

        req = Request(
            self.comments_url,
            data=json.dumps({"body": body}).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        try:
            with urlopen(req, timeout=self.timeout) as response:
                if not 200 <= response.status < 300:
                    raise AnnotationFailure(f"GitHub comment failed with status {response.status}")
        except URLError as e:
            raise AnnotationFailure(f"GitHub comment request failed: {e}") from e

        logger.info(f"Posted comment from {annotation.stage_name} to {self.repository}#{self.pull_request}")


class FileReportSink(AnnotationSink):
    """Writes annotations as files under an output directory."""

    _EXTENSIONS = {
        AnnotationTarget.SECURITY_REPORT: ".sarif",
        AnnotationTarget.ARTIFACT_STORE: ".md",
        AnnotationTarget.PULL_REQUEST: ".md",
    }

    def __init__(self, output_dir: str):
        super().__init__("file")
        self.output_dir = Path(output_dir)
        self.written: List[Path] = []

    def path_for(self, annotation: Annotation) -> Path:
        stem = re.sub(r"[^A-Za-z0-9_.-]+", "-", annotation.title or annotation.stage_name or "annotation")
        extension = self._EXTENSIONS.get(annotation.target, ".txt")
        return self.output_dir / annotation.target.value / f"{stem}{extension}"

    def send(self, annotation: Annotation) -> None:
        path = self.path_for(annotation)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(annotation.text, encoding="utf-8")
        except OSError as e:
            raise AnnotationFailure(f"Cannot write {path}: {e}") from e

        self.written.append(path)
        logger.info(f"Wrote {annotation.target.value} annotation to {path}")


class ConsoleSink(AnnotationSink):
    """Prints annotations to the terminal."""

    def __init__(self, console: Optional[Console] = None):
        super().__init__("console")
        self.console = console or Console()

    def send(self, annotation: Annotation) -> None:
        title = annotation.title or f"{annotation.stage_name} ({annotation.target.value})"
        if annotation.target == AnnotationTarget.SECURITY_REPORT:
            self.console.print(Panel(f"SARIF report ({len(annotation.text)} bytes)", title=title))
        else:
            self.console.print(Panel(Markdown(annotation.text), title=title))


class AnnotationDispatcher:
    """Routes annotations to sinks by target. Delivery failures never propagate."""

    def __init__(self, sinks: Optional[Dict[AnnotationTarget, List[AnnotationSink]]] = None):
        self.sinks: Dict[AnnotationTarget, List[AnnotationSink]] = {
            target: list(target_sinks) for target, target_sinks in (sinks or {}).items()
        }
        self.delivered = 0
        self.failures: List[Dict[str, str]] = []

    def add_sink(self, target: AnnotationTarget, sink: AnnotationSink) -> None:
        """Register a sink for an annotation target."""
        self.sinks.setdefault(target, []).append(sink)
        logger.debug(f"Registered sink {sink.name} for {target.value}")

    def dispatch(self, annotation: Annotation) -> bool:
        """Deliver an annotation to every sink for its target; True when all succeeded."""
        target_sinks = self.sinks.get(annotation.target, [])
        if not target_sinks:
            logger.debug(f"No sink for {annotation.target.value}; dropping annotation from {annotation.stage_name}")
            return False

        all_delivered = True
        for sink in target_sinks:
            try:
                sink.send(annotation)
                self.delivered += 1
            except Exception as e:
                all_delivered = False
                failure = e if isinstance(e, AnnotationFailure) else AnnotationFailure(str(e))
                self.failures.append({
                    "sink": sink.name,
                    "stage_name": annotation.stage_name,
                    "target": annotation.target.value,
                    "error": failure.message,
                    "timestamp": datetime.now().isoformat(),
                })
                logger.warning(f"Annotation sink {sink.name} failed for {annotation.stage_name}: {failure.message}")

        return all_delivered
