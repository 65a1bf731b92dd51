"""
Compilation pass.

Runs the pipeline enumerator -> synthesizer -> assembler for one agent
instance. A pass either succeeds, possibly with some endpoints dropped for
missing credentials, or fails as a whole on a StoreError, in which case
nothing is persisted.
"""

import concurrent.futures
import logging
from typing import Iterable, Optional

from .assembler import Owner, assemble_document
from .config import CompilerConfig
from .credentials import CredentialResolver, CredentialStore
from .enumerator import ResourceLister, enumerate_from_lister, order_resources
from .models import CompilationResult, CompiledJob, DroppedUnit, JobOutcome, ScrapeResource
from .persistence import Persister
from .synthesizer import assign_job_names, synthesize

logger = logging.getLogger(__name__)


class ScrapeConfigCompiler:
    """
    Compiles scrape resources into a scrape configuration document.

    Example:
        >>> compiler = ScrapeConfigCompiler(store, CompilerConfig())
        >>> result = compiler.compile(Owner("default", "vmagent"), resources)
        >>> print(result.text)
    """

    def __init__(self, store: CredentialStore, config: Optional[CompilerConfig] = None):
        self.store = store
        self.config = config or CompilerConfig()

    def _synthesize_all(self, resources: list[ScrapeResource],
                        resolver: CredentialResolver) -> list[list[JobOutcome]]:
        if self.config.workers <= 1 or len(resources) <= 1:
            return [synthesize(resource, resolver) for resource in resources]
        # map() yields in submission order, so completion order never leaks
        # into the document
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.config.workers) as executor:
            return list(executor.map(lambda resource: synthesize(resource, resolver), resources))

    def compile(self, owner: Owner, resources: Iterable[ScrapeResource]) -> CompilationResult:
        """
        Compile the given resources.

        Raises:
            StoreError: If the credential store fails
        """
        ordered = order_resources(resources)
        resolver = CredentialResolver(self.store, self.config.tls_mount_root)

        jobs: list[CompiledJob] = []
        dropped: list[DroppedUnit] = []
        for outcomes in self._synthesize_all(ordered, resolver):
            jobs.extend(assign_job_names(outcomes))
            dropped.extend(outcome for outcome in outcomes if isinstance(outcome, DroppedUnit))

        tls_assets: dict[str, bytes] = {}
        for job in jobs:
            tls_assets.update(job.tls_assets)

        document = assemble_document(self.config, owner, jobs)
        logger.info(
            "Compiled %d job(s) from %d resource(s) for %s, dropped %d endpoint(s)",
            len(jobs), len(ordered), owner.qualified_name, len(dropped),
        )
        return CompilationResult(
            document=document,
            jobs=jobs,
            dropped=dropped,
            tls_assets=tls_assets,
        )

    def compile_from_lister(self, owner: Owner, lister: ResourceLister) -> CompilationResult:
        return self.compile(owner, enumerate_from_lister(lister))

    def compile_and_save(self, owner: Owner, lister: ResourceLister,
                         persister: Persister) -> CompilationResult:
        """Compile and hand the document to the persister; nothing is saved on failure."""
        result = self.compile_from_lister(owner, lister)
        persister.save(owner.namespace, owner.name, result.document)
        return result


def compile_scrape_config(
    owner: Owner,
    resources: Iterable[ScrapeResource],
    store: CredentialStore,
    config: Optional[CompilerConfig] = None,
) -> CompilationResult:
    return ScrapeConfigCompiler(store, config).compile(owner, resources)
