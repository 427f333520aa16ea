"""Action proposers."""

from backbone.proposer.model_proposer import ModelProposer, parse_proposals
from backbone.proposer.protocol import ActionProposer

__all__ = ["ActionProposer", "ModelProposer", "parse_proposals"]
