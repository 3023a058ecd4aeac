"""fabengine: bootstrap orchestrator for a CNC controller host."""

__version__ = "0.1.0"
