"""git-rewrite: safer rebase and history editing on top of git."""

__version__ = "0.1.0"
