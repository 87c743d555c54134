"""
beads-vcs - a unified abstraction over git and Jujutsu (jj).

Usage:
    from beads_vcs.vcs import get_vcs

    vcs = get_vcs(".")
    print(vcs.name(), vcs.current_ref())
"""

__version__ = "0.4.0"
