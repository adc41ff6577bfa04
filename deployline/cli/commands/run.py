"""``deployline run`` — trigger executions for one or more git revisions.

Wires the stores, the scoped deploy client and the runner from
``ProdConfig``, runs Source then Build for each revision, and prints the
stage table. Several revisions are dispatched concurrently, bounded by
``max_concurrent_executions``. Exits non-zero when any execution fails.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console

from deployline.build.buildspec import BuildSpecError, load_buildspec
from deployline.build.executor import BuildExecutor
from deployline.build.runners import CommandRunner, ContainerRunner, LocalShellRunner
from deployline.cli.commands.grant import load_authority, load_credential
from deployline.config import PipelineConfig, ProdConfig, config, configure_logging
from deployline.core.artifact_store import ContentAddressedStore
from deployline.core.build_cache import BuildCache
from deployline.core.controller import PipelineController
from deployline.core.dispatcher import TriggerDispatcher
from deployline.core.errors import SourceUnavailableError
from deployline.core.event_bus import EventBus, TriggerQueue
from deployline.core.run_ledger import RunLedger
from deployline.deploy.backends import LocalFunctionBackend
from deployline.deploy.client import ScopedDeployClient
from deployline.deploy.credentials import RevocationList
from deployline.models.buildspec import DEFAULT_BUILD_IMAGE
from deployline.models.results import PipelineResult
from deployline.monitor.renderer import PipelineRenderer
from deployline.source.repository import GitRepository
from deployline.source.trigger import SourceTrigger

logger = logging.getLogger(__name__)

console = Console()


class WiringError(RuntimeError):
    """The pipeline cannot be assembled from the given configuration."""


def build_controller(
    pipeline: PipelineConfig,
    settings: ProdConfig,
    *,
    bus: EventBus | None = None,
) -> PipelineController:
    """Assemble a controller for *pipeline* from process settings."""
    try:
        buildspec = load_buildspec(pipeline.repository / pipeline.buildspec_path)
    except (OSError, BuildSpecError) as exc:
        raise WiringError(f"Cannot load buildspec: {exc}") from exc

    store = ContentAddressedStore(settings.artifact_store_path)

    deployer: ScopedDeployClient | None = None
    if buildspec.deploys:
        authority = load_authority(settings.keys_path)
        credential = load_credential(settings.keys_path, pipeline.function_identity)
        if authority is None or credential is None:
            raise WiringError(
                f"No deploy credential for {pipeline.function_identity}; "
                f"run `deployline grant {pipeline.function_identity}` first"
            )
        deployer = ScopedDeployClient(
            LocalFunctionBackend(settings.function_root),
            credential,
            authority.verify_key_hex,
            RevocationList(settings.revocations_path),
        )

    runner: CommandRunner
    image = buildspec.env.image
    if image == DEFAULT_BUILD_IMAGE:
        image = settings.build_image
    if settings.use_containers:
        runner = ContainerRunner(image)
    elif settings.is_production:
        raise WiringError(
            "Production builds must run in the pinned image; "
            "set DEPLOYLINE_USE_CONTAINERS=true"
        )
    else:
        logger.warning(
            "Build commands run on the host; image %s only keys the cache. "
            "Set DEPLOYLINE_USE_CONTAINERS=true to run them in it.",
            image,
        )
        runner = LocalShellRunner()

    executor = BuildExecutor(
        buildspec,
        store,
        deployer,
        runner=runner,
        workspace_root=settings.workspace_root,
        command_timeout=settings.command_timeout_seconds,
    )
    trigger = SourceTrigger(GitRepository(pipeline.repository), store)
    return PipelineController(
        trigger,
        executor,
        cache=BuildCache(settings.cache_path),
        ledger=RunLedger(settings.ledger_path),
        bus=bus,
    )


def run_cmd(
    function: str = typer.Argument(..., help="Function identity to deploy to."),
    revisions: list[str] = typer.Option(
        ["HEAD"],
        "--revision",
        "-r",
        help="Commit, branch or tag to build. Repeat to build several.",
    ),
    repo: Path = typer.Option(
        Path("."),
        "--repo",
        help="Path to the git repository.",
    ),
    buildspec: Path = typer.Option(
        Path("buildspec.yml"),
        "--buildspec",
        "-b",
        help="Buildspec path, relative to the repository.",
    ),
    follow: bool = typer.Option(
        True,
        "--follow/--quiet",
        help="Print stage transitions as they happen.",
    ),
) -> None:
    """Run the pipeline for each revision and deploy on success.

    Commands run on the host unless DEPLOYLINE_USE_CONTAINERS=true, in which
    case each one runs in the buildspec's pinned image.
    """
    configure_logging(config.log_level)
    renderer = PipelineRenderer(console=console)
    bus = EventBus()
    if follow:
        bus.subscribe(renderer.print_transition)

    pipeline = PipelineConfig(
        repository=repo,
        function_identity=function,
        buildspec_path=buildspec,
    )
    try:
        controller = build_controller(pipeline, config, bus=bus)
    except WiringError as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        raise typer.Exit(code=2)

    # An unresolvable revision still runs so the failure lands in the ledger.
    events = []
    for revision in revisions:
        try:
            resolved = GitRepository(repo).resolve(revision)
        except SourceUnavailableError:
            resolved = revision
        events.append(controller.trigger.event_for(resolved))

    results: list[PipelineResult]
    if len(events) == 1:
        results = [controller.run(events[0])]
    else:
        queue = TriggerQueue()
        dispatcher = TriggerDispatcher(
            controller, queue, max_workers=config.max_concurrent_executions
        )
        dispatcher.start()
        for event in events:
            queue.put(event)
        results = dispatcher.drain()

    for result in results:
        console.print()
        renderer.print_result(result)
    if len(results) < len(events) or not all(r.succeeded for r in results):
        raise typer.Exit(code=1)
