"""
bidcore - bid settlement and auction lifecycle engine.

Covers:
- Bid validation and leader promotion/demotion
- Proxy (maximum) bid auto-escalation
- Auction closing, reserve checks and winner determination
- Bid retraction
- Trust-score feedback
"""

__version__ = "0.1.0"
