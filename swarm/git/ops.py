"""GitOps -- branch, merge and commit operations used by the sprint engine."""

from pathlib import Path

from swarm.exceptions import GitOperationError, MergeConflictError
from swarm.git.base import GitRunner, Identity
from swarm.logging import get_logger

logger = get_logger("git.ops")


class GitOps(GitRunner):
    """Branch, merge and commit operations on top of ``GitRunner``."""

    def branch_exists(self, branch: str) -> bool:
        ref = f"refs/heads/{branch}"
        return self._run("show-ref", "--verify", "--quiet", ref, check=False).returncode == 0

    def create_branch(self, branch: str, base: str = "HEAD") -> str:
        """Create ``branch`` at ``base`` and return the commit it points at."""
        self._run("branch", branch, base)
        logger.info(f"Created branch {branch} from {base}")
        return self.get_commit(branch)

    def delete_branch(self, branch: str, force: bool = False) -> bool:
        """Delete a local branch.

        Returns:
            False if the branch did not exist
        """
        if not self.branch_exists(branch):
            return False
        self._run("branch", "-D" if force else "-d", branch)
        logger.info(f"Deleted branch {branch}")
        return True

    def checkout(self, ref: str) -> None:
        self._run("checkout", "-q", ref)
        logger.debug(f"Checked out {ref} in {self.repo_path}")

    def get_commit(self, ref: str = "HEAD") -> str:
        return self._output("rev-parse", ref)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Check ``git merge-base --is-ancestor``.

        Raises:
            GitOperationError: If git fails for any reason other than "not an ancestor"
        """
        result = self._run("merge-base", "--is-ancestor", ancestor, descendant, check=False)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        stderr = result.stderr.strip()
        raise GitOperationError(
            f"git merge-base failed: {stderr}",
            command=f"git merge-base --is-ancestor {ancestor} {descendant}",
            exit_code=result.returncode,
            stderr=stderr,
        )

    def parent_count(self, ref: str = "HEAD") -> int:
        """Number of parents of the commit ``ref`` points at."""
        result = self._run("rev-list", "--parents", "-n", "1", ref)
        return max(len(result.stdout.split()) - 1, 0)

    def count_unique_commits(self, branch: str, base: str) -> int:
        """Commits reachable from ``branch`` but not from ``base``."""
        result = self._run("rev-list", "--count", f"{base}..{branch}")
        return int(result.stdout.strip() or 0)

    def get_conflicting_files(self) -> list[str]:
        """Paths left unmerged by the last merge attempt."""
        result = self._run("diff", "--name-only", "--diff-filter=U", check=False)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def has_conflicts(self) -> bool:
        return bool(self.get_conflicting_files())

    def abort_merge(self) -> None:
        # No-op when no merge is in progress
        self._run("merge", "--abort", check=False)
        logger.info(f"Merge aborted in {self.repo_path.name}")

    def update_ref(self, ref: str, target: str) -> None:
        self._run("update-ref", ref, target)

    def merge(
        self,
        branch: str,
        message: str | None = None,
        no_ff: bool = True,
        autostash: bool = False,
        identity: Identity | None = None,
        preserve_ref: str | None = None,
    ) -> str:
        """Merge ``branch`` into whatever is checked out and return the new HEAD.

        A conflicted merge is always aborted so the checkout is clean again.
        When ``preserve_ref`` is given, that ref is pointed at the tip of
        ``branch`` first, so the work survives later branch deletion.

        Raises:
            MergeConflictError: When git stopped on conflicting paths
            GitOperationError: When the merge failed for another reason
        """
        flags = [flag for flag, on in (("--no-ff", no_ff), ("--autostash", autostash)) if on]
        if message:
            flags += ["-m", message]

        try:
            self._run("merge", *flags, branch, env=identity.env() if identity else None)
        except GitOperationError:
            conflicts = self.get_conflicting_files()
            if not conflicts:
                raise
            into = self.current_branch()
            if preserve_ref:
                self.update_ref(preserve_ref, branch)
                logger.warning(f"Conflicting work on {branch} kept at {preserve_ref}")
            self.abort_merge()
            raise MergeConflictError(
                f"Merge conflict: {branch} into {into}",
                source_branch=branch,
                target_branch=into,
                conflicting_files=conflicts,
            ) from None

        head = self.current_commit()
        logger.info(f"Merged {branch} into {self.current_branch()} at {head[:8]}")
        return head

    def commit_all(self, message: str, identity: Identity | None = None) -> bool:
        """Stage every change and commit it.

        Returns:
            False if there was nothing to commit
        """
        self._run("add", "-A")
        return self._commit_staged(message, identity)

    def commit_paths(
        self, paths: list[str | Path], message: str, identity: Identity | None = None
    ) -> bool:
        """Stage only the given paths (those that exist) and commit them.

        Returns:
            False if there was nothing to commit
        """
        existing = [str(p) for p in paths if (self.repo_path / p).exists()]
        if existing:
            self._run("add", "--", *existing)
        return self._commit_staged(message, identity)

    def _commit_staged(self, message: str, identity: Identity | None) -> bool:
        staged = self._run("diff", "--cached", "--quiet", check=False)
        if staged.returncode == 0:
            logger.debug(f"Nothing to commit in {self.repo_path}")
            return False
        self._run("commit", "-q", "-m", message, env=identity.env() if identity else None)
        logger.info(f"Committed in {self.repo_path.name}: {message[:60]}")
        return True

    def log_range(self, from_ref: str, to_ref: str = "HEAD") -> str:
        """``git log --stat from..to``; empty string if git fails."""
        try:
            return self._run("log", "--stat", f"{from_ref}..{to_ref}").stdout
        except GitOperationError as e:
            logger.warning(f"git log {from_ref}..{to_ref} failed: {e}")
            return ""

    def untracked_files(self, pathspec: str) -> list[str]:
        """Untracked (not ignored) files under ``pathspec``."""
        result = self._run("ls-files", "--others", "--exclude-standard", "--", pathspec)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def tracked_files(self, ref: str, pathspec: str) -> list[str]:
        """Files tracked at ``ref`` under ``pathspec``."""
        result = self._run("ls-tree", "-r", "--name-only", ref, "--", pathspec)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def list_branches(self, pattern: str) -> list[str]:
        """Local branches matching a ``git branch --list`` glob."""
        result = self._run("branch", "--list", "--format=%(refname:short)", pattern)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]
