class LeadError(Exception):
    """Base class for lead lifecycle errors surfaced to the API layer."""

class InvalidStateError(LeadError):
    """Mutation attempted on a terminal or otherwise ineligible lead."""

class ConcurrentUpdateError(LeadError):
    """The lead changed between read and conditional write."""

class ClaimConflictError(LeadError):
    """The lead is not claimable, or someone else claimed it first."""

class InvalidMergeError(LeadError):
    """The ids supplied for a merge do not form a valid merge set."""

class MergeConflictError(LeadError):
    """A merge member vanished or changed while the merge was running."""
