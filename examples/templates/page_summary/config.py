"""Runtime configuration for the Page Summary pipeline."""

from dataclasses import dataclass

from flowstate.config import ExecutionConfig

default_config = ExecutionConfig()


@dataclass
class AgentMetadata:
    name: str = "Page Summary"
    version: str = "1.0.0"
    description: str = (
        "Turn a web page into a calm, accurate summary. A navigator maps the page, "
        "a security sentinel flags money and manipulation risks, two writers draft "
        "in parallel, an arbiter merges their drafts and a guardian reviews the "
        "result, sending it back for revision when something important is missing."
    )


metadata = AgentMetadata()
