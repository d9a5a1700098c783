"""Line-level ownership computed from git blame."""

import asyncio
import re
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from git import GitCommandError

from ..core.models import AnalysisWarning, WarningCode
from ..exceptions import EmptyRepositoryError, RequestCancelledError
from ..logging import get_logger
from ..progress.emitter import ProgressScope
from .mailmap import MailmapResolver
from .models import AuthorLines, BlameAttribution, BlameOptions, FileBlameResult, normalize_email
from .repository import GitRepository


logger = get_logger(__name__)

HEADER_PATTERN = re.compile(r"^[0-9a-f]{40} \d+ \d+")


def parse_line_porcelain(output: str) -> Counter:
    """Count lines per raw (author name, author email) in ``--line-porcelain`` output.

    Every blamed line is preceded by its full header block, so the author
    fields seen most recently belong to the next tab-prefixed content line.
    """
    counts: Counter = Counter()
    name = ""
    email = ""
    for line in output.split("\n"):
        if line.startswith("\t"):
            counts[(name, email)] += 1
        elif HEADER_PATTERN.match(line):
            name, email = "", ""
        elif line.startswith("author "):
            name = line[len("author "):]
        elif line.startswith("author-mail "):
            email = normalize_email(line[len("author-mail "):].strip().lstrip("<").rstrip(">"))
    return counts


class BlameEngine:
    """Computes per-author line ownership across the HEAD tree of a repository."""

    def __init__(self, progress: Optional[ProgressScope] = None, cancel_event: Optional[asyncio.Event] = None):
        self.progress = progress or ProgressScope(None)
        self.cancel_event = cancel_event

    async def compute_attribution(
        self, repo_path: str, options: Optional[BlameOptions] = None, branch: Optional[str] = None
    ) -> BlameAttribution:
        options = options or BlameOptions()
        loop = asyncio.get_running_loop()

        repository = GitRepository(repo_path)
        if not repository.has_commits:
            raise EmptyRepositoryError(f"Repository {repository.name} has no commits")
        rev = repository.resolve_branch(branch) if branch else "HEAD"

        text_files, binary_files = await loop.run_in_executor(None, repository.list_blame_targets, rev)
        targets = [path for path, line_count in text_files if line_count > 0]
        ignore_revs = repository.ignore_revs_file() if options.respect_ignore_revs_file else None

        logger.info(
            "Starting blame",
            repo=repository.name,
            files=len(targets),
            binary_files=len(binary_files),
            ignore_revs=bool(ignore_revs),
            max_concurrency=options.max_concurrency,
        )
        self.progress.report(0.0, f"Blaming {len(targets)} files...")

        warnings: List[AnalysisWarning] = []
        raw_counts: Dict[str, Counter] = {}
        completed = 0

        executor = ThreadPoolExecutor(max_workers=options.max_concurrency, thread_name_prefix="blame")
        semaphore = asyncio.Semaphore(options.max_concurrency)

        async def blame_one(path: str) -> Tuple[str, Optional[Counter], Optional[str]]:
            nonlocal completed
            async with semaphore:
                self._check_cancelled()
                try:
                    output = await loop.run_in_executor(
                        executor, self._blame_file, repository, path, rev, options, ignore_revs
                    )
                    result = (path, parse_line_porcelain(output), None)
                except (GitCommandError, UnicodeDecodeError) as e:
                    result = (path, None, str(e))
            completed += 1
            self.progress.report(completed / max(len(targets), 1), f"Blamed {completed}/{len(targets)} files")
            return result

        try:
            results = await asyncio.gather(*(blame_one(path) for path in targets))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for path, counts, error in results:
            if counts is None:
                logger.warning("Skipping file that could not be blamed", path=path, error=error)
                warnings.append(AnalysisWarning(
                    code=WarningCode.CORRUPT_FILE_SKIPPED,
                    message=f"Could not compute blame for {path}; file skipped",
                    details={"path": path, "error": error},
                ))
                continue
            raw_counts[path] = counts

        resolver = MailmapResolver(repository, enabled=options.use_mailmap)
        all_raw = {raw for counts in raw_counts.values() for raw in counts}
        await loop.run_in_executor(None, resolver.resolve_many, sorted(all_raw))

        files = [self._file_result(path, counts, resolver) for path, counts in sorted(raw_counts.items())]
        attribution = self._aggregate(files, resolver, warnings)

        logger.info(
            "Blame complete",
            repo=repository.name,
            files_processed=attribution.files_processed,
            total_lines=attribution.total_lines,
            authors=len(attribution.authors),
            skipped=len(warnings),
        )
        return attribution

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RequestCancelledError("Blame cancelled")

    @staticmethod
    def _blame_file(
        repository: GitRepository, path: str, rev: str, options: BlameOptions, ignore_revs: Optional[Path]
    ) -> str:
        return repository.blame_porcelain(
            path,
            rev=rev,
            ignore_whitespace=options.ignore_whitespace,
            detect_moves=options.detect_moves,
            detect_copies=options.detect_copies,
            ignore_revs_file=ignore_revs,
        )

    @staticmethod
    def _file_result(path: str, counts: Counter, resolver: MailmapResolver) -> FileBlameResult:
        by_key: Dict[str, int] = defaultdict(int)
        for (name, email), lines in counts.items():
            by_key[resolver.key_for(name, email)] += lines
        authors = [
            AuthorLines(identity=resolver.identity_for(key), lines=lines)
            for key, lines in sorted(by_key.items(), key=lambda item: (-item[1], item[0]))
        ]
        return FileBlameResult(path=path, total_lines=sum(counts.values()), authors=authors)

    @staticmethod
    def _aggregate(
        files: List[FileBlameResult], resolver: MailmapResolver, warnings: List[AnalysisWarning]
    ) -> BlameAttribution:
        totals: Dict[str, int] = defaultdict(int)
        for file_result in files:
            for entry in file_result.authors:
                totals[entry.identity.key] += entry.lines

        authors = [
            AuthorLines(identity=resolver.identity_for(key), lines=lines)
            for key, lines in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        ]
        return BlameAttribution(
            authors=authors,
            total_lines=sum(f.total_lines for f in files),
            files_processed=len(files),
            files=files,
            warnings=warnings,
        )
