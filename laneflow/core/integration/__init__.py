"""Git concurrency primitives: retrying pushes, micro-worktrees, locks and trunk guards."""
