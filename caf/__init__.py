"""coding-agent-fabric: install agent resources into coding agent config directories."""

__version__ = "0.1.0"
