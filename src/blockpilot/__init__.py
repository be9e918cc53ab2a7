"""BlockPilot: chat-driven block document editing with reversible tool chains."""

__version__ = "0.1.0"
