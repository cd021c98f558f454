"""FlowTrack: material flow and process chain tracking engine."""

__version__ = "0.1.0"
