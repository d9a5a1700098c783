"""Read-only access to a local git repository."""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import logging

from git import Repo, InvalidGitRepositoryError, NoSuchPathError, GitCommandError

from ..core.constants import EMPTY_TREE_SHA, IGNORE_REVS_FILE
from ..exceptions import GitRepositoryError, InvalidRequestError


logger = logging.getLogger(__name__)

# Field and record separators for machine-readable log output
FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"
LOG_FORMAT = RECORD_SEP + FIELD_SEP.join(["%H", "%P", "%aN", "%aE", "%aI", "%s"])


class GitRepository:
    """Wraps a local repository with the git primitives attribution needs."""

    def __init__(self, repo_path: str):
        """Initialize with path to existing git repository."""
        self.repo_path = Path(repo_path)
        try:
            self.repo = Repo(repo_path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitRepositoryError(f"Invalid git repository: {repo_path}")
        if self.repo.bare:
            raise GitRepositoryError(f"Bare repositories are not supported: {repo_path}")

    @property
    def name(self) -> str:
        """Get repository name from path."""
        return self.repo_path.name

    @property
    def root(self) -> Path:
        return Path(self.repo.working_tree_dir)

    @property
    def has_commits(self) -> bool:
        """True when HEAD points at a commit."""
        return self.repo.head.is_valid()

    @property
    def current_commit(self) -> str:
        """Get current HEAD commit SHA."""
        return self.repo.head.commit.hexsha

    def resolve_branch(self, branch: Optional[str]) -> str:
        """Return the commit SHA a branch (or HEAD) points at."""
        ref = branch or "HEAD"
        try:
            return self.repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}")
        except GitCommandError:
            raise InvalidRequestError(f"Branch not found: {ref}", details={"branch": ref})

    def ignore_revs_file(self) -> Optional[Path]:
        """Path of the ignore-revs file at the repository root, if one exists."""
        path = self.root / IGNORE_REVS_FILE
        return path if path.is_file() else None

    def list_blame_targets(self, rev: str = "HEAD") -> Tuple[List[Tuple[str, int]], List[str]]:
        """List tracked files at ``rev`` as (text files with line counts, binary files).

        Diffing against the empty tree yields one numstat record per file; git
        reports binary files with ``-`` in place of line counts.
        """
        try:
            output = self.repo.git.diff("--numstat", "-z", "--no-renames", EMPTY_TREE_SHA, rev)
        except GitCommandError as e:
            raise GitRepositoryError.from_exception(f"Failed to list files at {rev}", e)

        text_files: List[Tuple[str, int]] = []
        binary_files: List[str] = []
        for record in output.split("\0"):
            if not record.strip():
                continue
            parts = record.split("\t", 2)
            if len(parts) != 3:
                logger.debug("Skipping unparseable numstat record %r", record)
                continue
            added, _deleted, path = parts
            if added == "-":
                binary_files.append(path)
            else:
                text_files.append((path, int(added)))
        return text_files, binary_files

    def blame_porcelain(
        self,
        path: str,
        rev: str = "HEAD",
        ignore_whitespace: bool = True,
        detect_moves: bool = True,
        detect_copies: bool = True,
        ignore_revs_file: Optional[Path] = None,
    ) -> str:
        """Run ``git blame --line-porcelain`` for one file.

        Raises GitCommandError or UnicodeDecodeError for files git cannot blame;
        the caller decides whether that is fatal.
        """
        args: List[str] = []
        if ignore_whitespace:
            args.append("-w")
        if detect_moves:
            args.append("-M")
        if detect_copies:
            args.append("-C")
        if ignore_revs_file is not None:
            args.extend(["--ignore-revs-file", str(ignore_revs_file)])
        args.extend(["--line-porcelain", rev, "--", path])
        return self.repo.git.blame(*args)

    def check_mailmap(self, contacts: Sequence[str]) -> List[str]:
        """Map ``Name <email>`` contacts through the repository mailmap."""
        if not contacts:
            return []
        try:
            output = self.repo.git.check_mailmap(*contacts)
        except GitCommandError as e:
            raise GitRepositoryError.from_exception("git check-mailmap failed", e)
        return output.splitlines()

    def log_with_numstat(
        self,
        branch: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        use_mailmap: bool = True,
    ) -> str:
        """Raw ``git log --numstat`` output, merges included, newest first."""
        args = [f"--format={LOG_FORMAT}", "--numstat", "--no-renames"]
        if use_mailmap:
            args.insert(0, "--use-mailmap")
        if since:
            args.append(f"--since={since.isoformat()}")
        if until:
            args.append(f"--until={until.isoformat()}")
        args.append(branch or "HEAD")
        args.append("--")
        try:
            return self.repo.git.log(*args)
        except GitCommandError as e:
            raise GitRepositoryError.from_exception("Failed to read commit log", e)
