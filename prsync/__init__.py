"""
Prsync - Keep your open GitHub PRs mergeable from the terminal.

A CLI tool that:
1. Tracks your open PRs across one or more repositories
2. Renders a live, aligned status view (build + approval state)
3. Rebases stale branches one at a time, aborting cleanly on conflicts
4. Watches in the background and notifies when PRs need a rebase

Usage:
    prsync status           # PR status for the current repository
    prsync status --all     # PR status for every configured repository
    prsync live             # Live-updating dashboard
    prsync rebase           # Select and rebase a stale branch
    prsync config add       # Track a repository
    prsync watch install    # Background checks with notifications
"""

__version__ = "0.1.0"
__author__ = "Prsync"
