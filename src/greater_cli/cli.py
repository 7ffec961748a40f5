"""
greater-registry: command-line front end for the registry install pipeline.

Usage:
    greater-registry resolve [--ref REF] [--config components.json]
    greater-registry index [--ref REF] [--refresh | --no-cache]
    greater-registry verify-tag REF
    greater-registry fetch NAME [--ref REF] [--out DIR] [--force] [--require-signature]
    greater-registry transform FILE... [--config components.json] [--write]
    greater-registry audit [--limit N] [--action ACTION] [--component NAME] [--since ISO]
    greater-registry cache ls | cache clear [--ref REF]

Exit codes: 0 success, 1 operation failed, 2 usage error.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson

from greater_cli.config import CliConfig, InstallConfig, InstallMode, load_install_config
from greater_cli.connectors.github import CachingFileProvider, create_provider
from greater_cli.errors import GreaterCliError
from greater_cli.logging_config import setup_logging
from greater_cli.metrics import PipelineMetrics
from greater_cli.pipeline import ComponentFetcher, EntryKind, write_files
from greater_cli.registry.cache import IndexCache
from greater_cli.registry.index import (
    RegistryIndexClient,
    get_all_component_names,
    get_all_face_names,
    get_all_shared_names,
)
from greater_cli.security.audit import AuditAction, AuditLog
from greater_cli.security.signature import GitTagProbe, SubprocessCommandRunner
from greater_cli.transform.rewriter import get_transform_summary, transform_imports

if TYPE_CHECKING:
    from collections.abc import Sequence

    from greater_cli.connectors.github import RemoteFileProvider

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


@dataclass
class Context:
    """Collaborators shared by every subcommand."""

    config: CliConfig
    metrics: PipelineMetrics
    provider: RemoteFileProvider
    index_client: RegistryIndexClient
    audit: AuditLog

    async def close(self) -> None:
        await self.provider.close()


def build_context(config: CliConfig, *, use_file_cache: bool = True) -> Context:
    metrics = PipelineMetrics()
    provider = create_provider(config, metrics=metrics, use_file_cache=use_file_cache)
    cache = IndexCache(config.registry_cache_dir)
    return Context(
        config=config,
        metrics=metrics,
        provider=provider,
        index_client=RegistryIndexClient(provider, cache, config, metrics),
        audit=AuditLog(
            config.audit_log_dir,
            max_size_bytes=config.audit_max_size_bytes,
            retention=config.audit_retention,
            metrics=metrics,
        ),
    )


def _emit(data: Any) -> None:
    sys.stdout.write(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode() + "\n")


def _install_config(path: Path | None) -> InstallConfig:
    if path is None:
        default = Path("components.json")
        return load_install_config(default) if default.is_file() else InstallConfig()
    return load_install_config(path)


# ----------------------------------------------------------------------
# Subcommands
# ----------------------------------------------------------------------


async def cmd_resolve(args: argparse.Namespace, ctx: Context) -> int:
    install = _install_config(args.config)
    resolved = await ctx.index_client.resolve_ref(args.ref, install.ref)
    _emit({"ref": resolved.ref, "source": resolved.source.value})
    return EXIT_OK


async def cmd_index(args: argparse.Namespace, ctx: Context) -> int:
    resolved = await ctx.index_client.resolve_ref(args.ref)
    index = await ctx.index_client.fetch_registry_index(
        resolved.ref, skip_cache=args.no_cache, force_refresh=args.refresh
    )
    _emit(
        {
            "ref": index.ref,
            "version": index.version,
            "schemaVersion": index.schema_version,
            "generatedAt": index.generated_at.isoformat(),
            "components": get_all_component_names(index),
            "faces": get_all_face_names(index),
            "shared": get_all_shared_names(index),
        }
    )
    return EXIT_OK


async def cmd_verify_tag(args: argparse.Namespace, ctx: Context) -> int:
    probe = GitTagProbe(
        SubprocessCommandRunner(args.repo), timeout_s=ctx.config.git_timeout_s, metrics=ctx.metrics
    )
    result = probe.verify(args.ref)
    _emit(result.to_dict())
    return EXIT_OK if result.verified else EXIT_FAILURE


async def cmd_fetch(args: argparse.Namespace, ctx: Context) -> int:
    install = _install_config(args.config)
    fetcher = ComponentFetcher(
        ctx.index_client,
        ctx.provider,
        ctx.audit,
        install,
        signature_probe=GitTagProbe(
            SubprocessCommandRunner(args.repo),
            timeout_s=ctx.config.git_timeout_s,
            metrics=ctx.metrics,
        ),
        metrics=ctx.metrics,
    )
    result = await fetcher.fetch(
        args.name,
        ref=args.ref,
        kind=EntryKind(args.kind) if args.kind else None,
        skip_verification=args.skip_verification,
        verify_signature=args.verify_signature,
        require_signature=args.require_signature,
        fail_fast=args.fail_fast,
        transform=not args.no_transform,
    )

    written: list[str] = []
    if args.out is not None:
        try:
            paths = write_files(result, args.out, force=args.force, metrics=ctx.metrics)
        except (OSError, ValueError) as e:
            logger.error("Cannot write fetched files", extra={"error": str(e)})
            return EXIT_FAILURE
        written = [str(p) for p in paths]

    _emit(
        {
            "name": result.name,
            "kind": result.kind.value,
            "ref": result.ref.ref,
            "refSource": result.ref.source.value,
            "verified": result.verified,
            "signature": result.signature.to_dict() if result.signature else None,
            "integrity": result.integrity_report.to_dict() if result.integrity_report else None,
            "files": [
                {"path": f.path, "size": len(f.content), "transformedImports": f.transformed_count}
                for f in result.files
            ],
            "written": written,
            "warnings": [w.message for w in result.warnings],
        }
    )
    return EXIT_OK


async def cmd_transform(args: argparse.Namespace, ctx: Context) -> int:
    install = _install_config(args.config)
    if args.mode is not None:
        install = install.model_copy(update={"install_mode": InstallMode(args.mode)})

    results = []
    report = []
    for path in args.files:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Cannot read file", extra={"path": str(path), "error": str(e)})
            return EXIT_FAILURE
        result = transform_imports(text, install, path.name)
        results.append(result)
        if args.write and result.has_changes:
            try:
                path.write_text(result.content, encoding="utf-8")
            except OSError as e:
                logger.error("Cannot write file", extra={"path": str(path), "error": str(e)})
                return EXIT_FAILURE
        report.append(
            {
                "path": str(path),
                "transformed": [{"from": a, "to": b} for a, b in result.transformed_paths],
            }
        )

    _emit({"summary": get_transform_summary(results), "files": report})
    return EXIT_OK


async def cmd_audit(args: argparse.Namespace, ctx: Context) -> int:
    if args.clear:
        ctx.audit.clear()
        _emit({"cleared": True})
        return EXIT_OK
    entries = ctx.audit.read(
        limit=args.limit,
        action=args.action,
        component=args.component,
        since=args.since,
    )
    _emit([e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in entries])
    return EXIT_OK


async def cmd_cache(args: argparse.Namespace, ctx: Context) -> int:
    if args.cache_command == "ls":
        _emit(
            [
                m.model_dump(mode="json", by_alias=True)
                for m in ctx.index_client.cached_refs()
            ]
        )
        return EXIT_OK

    if args.ref is not None:
        ctx.index_client.clear_registry_cache(args.ref)
        if isinstance(ctx.provider, CachingFileProvider):
            ctx.provider.clear(args.ref)
    else:
        ctx.index_client.clear_all_registry_cache()
        if isinstance(ctx.provider, CachingFileProvider):
            ctx.provider.clear_all()
    _emit({"cleared": args.ref or "all"})
    return EXIT_OK


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------


def _parse_since(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid ISO-8601 timestamp: {value!r}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="greater-registry",
        description="Fetch, verify and rewrite Greater Components from the git-hosted registry.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--home", type=Path, default=None, help="State directory (default: ~/.greater-components)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("resolve", help="Resolve the ref to install from")
    p.add_argument("--ref", help="Explicit ref (\"latest\" triggers a lookup)")
    p.add_argument("--config", type=Path, help="Path to components.json")
    p.set_defaults(handler=cmd_resolve)

    p = sub.add_parser("index", help="Show the registry index for a ref")
    p.add_argument("--ref", help="Ref (default: resolved)")
    group = p.add_mutually_exclusive_group()
    group.add_argument(
        "--refresh", action="store_true", help="Ignore cached data, refresh the cache"
    )
    group.add_argument("--no-cache", action="store_true", help="Neither read nor write the cache")
    p.set_defaults(handler=cmd_index)

    p = sub.add_parser("verify-tag", help="Verify a git tag signature")
    p.add_argument("ref", help="Tag name")
    p.add_argument("--repo", type=Path, default=None, help="Repository to run git in")
    p.set_defaults(handler=cmd_verify_tag)

    p = sub.add_parser("fetch", help="Fetch, verify and rewrite a registry entry")
    p.add_argument("name", help="Component, face or shared module name")
    p.add_argument("--ref", help="Explicit ref")
    p.add_argument("--kind", choices=[k.value for k in EntryKind], help="Registry section")
    p.add_argument("--config", type=Path, help="Path to components.json")
    p.add_argument("--out", type=Path, default=None, help="Write files below this directory")
    p.add_argument("--force", action="store_true", help="Overwrite existing files")
    p.add_argument("--skip-verification", action="store_true", help="Skip checksum verification")
    p.add_argument("--verify-signature", action="store_true", help="Check the tag signature")
    p.add_argument(
        "--require-signature", action="store_true", help="Fail unless the tag is validly signed"
    )
    p.add_argument("--fail-fast", action="store_true", help="Stop at the first checksum mismatch")
    p.add_argument("--no-transform", action="store_true", help="Do not rewrite import paths")
    p.add_argument("--repo", type=Path, default=None, help="Repository to verify tags in")
    p.set_defaults(handler=cmd_fetch)

    p = sub.add_parser("transform", help="Rewrite Greater imports in local files")
    p.add_argument("files", nargs="+", type=Path, help="Files to rewrite")
    p.add_argument("--config", type=Path, help="Path to components.json")
    p.add_argument("--mode", choices=[m.value for m in InstallMode], help="Override install mode")
    p.add_argument("--write", action="store_true", help="Write changes in place")
    p.set_defaults(handler=cmd_transform)

    p = sub.add_parser("audit", help="Read or clear the audit log")
    p.add_argument("--limit", type=int, default=None, help="Maximum entries")
    p.add_argument("--action", choices=[a.value for a in AuditAction], help="Filter by action")
    p.add_argument("--component", help="Filter by component")
    p.add_argument("--since", type=_parse_since, help="Only entries at or after this ISO-8601 time")
    p.add_argument("--clear", action="store_true", help="Delete the log and its rotations")
    p.set_defaults(handler=cmd_audit)

    p = sub.add_parser("cache", help="Inspect or clear cached registry data")
    cache_sub = p.add_subparsers(dest="cache_command", required=True)
    cache_sub.add_parser("ls", help="List cached registry indexes")
    clear = cache_sub.add_parser("clear", help="Clear cached indexes and files")
    clear.add_argument("--ref", help="Clear a single ref (default: everything)")
    p.set_defaults(handler=cmd_cache)

    return parser


async def run(args: argparse.Namespace, config: CliConfig) -> int:
    ctx = build_context(config, use_file_cache=not getattr(args, "no_cache", False))
    try:
        return await args.handler(args, ctx)
    except GreaterCliError as e:
        logger.error("%s", e, extra={"error_type": type(e).__name__})
        return EXIT_FAILURE
    finally:
        await ctx.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code not in (0, None) else EXIT_OK

    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO, json_format=args.json_logs)

    overrides: dict[str, Any] = {}
    if args.home is not None:
        overrides["home_dir"] = args.home
    try:
        config = CliConfig.from_env(**overrides)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_USAGE

    return asyncio.run(run(args, config))


if __name__ == "__main__":
    sys.exit(main())
