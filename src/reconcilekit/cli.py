#!/usr/bin/env python3
"""
reconcilectl - kubectl-like access to the PostgreSQL object store.

Inspect and edit managed objects, apply the store schema, and run commands
in pods through the Kubernetes exec API.
"""

import asyncio
import json
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple

import click
import yaml
from tabulate import tabulate

from reconcilekit.apicall import ApiClient
from reconcilekit.conditions import set_annotation
from reconcilekit.config import ExecConfig, LoggingConfig, get_config
from reconcilekit.db import PostgresObjectStore
from reconcilekit.errors import StoreError
from reconcilekit.objects import ObjectKey
from reconcilekit.podexec import ExecError, PodExecutor


@asynccontextmanager
async def open_store() -> AsyncIterator[PostgresObjectStore]:
    """Connect to the configured store for the duration of one command."""
    store = PostgresObjectStore.from_config(get_config().database)
    await store.connect()
    try:
        yield store
    finally:
        await store.close()


def _run(coro):
    """Run a command coroutine, turning store failures into exit status 1."""
    try:
        return asyncio.run(coro)
    except StoreError as e:
        click.echo(f"Error: {type(e).__name__}: {e}", err=True)
        sys.exit(1)


def _object_key(name: str, namespace: str) -> ObjectKey:
    """Accept NAME or NAMESPACE/NAME; -n applies to the bare form."""
    try:
        return ObjectKey.parse(name, default_namespace=namespace)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="NAME") from e


def _parse_pairs(pairs: Tuple[str, ...], what: str) -> Dict[str, str]:
    parsed = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint=what)
        parsed[key] = value
    return parsed


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level):
    """reconcilectl - manage objects served to reconcilers"""
    logging_config = LoggingConfig.from_env()
    if log_level:
        logging_config = LoggingConfig(level=log_level)
    logging_config.configure()


@cli.command()
@click.option("--dry-run", is_flag=True, help="Only list pending migrations")
def migrate(dry_run):
    """Apply the object store schema"""

    async def run():
        async with open_store() as store:
            return await store.initialize_schema(dry_run=dry_run)

    filenames = _run(run())
    if not filenames:
        click.echo("Schema is up to date")
        return
    verb = "Pending" if dry_run else "Applied"
    for filename in filenames:
        click.echo(f"{verb}: {filename}")


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
def get(kind, name, namespace, output):
    """Show a single object"""
    key = _object_key(name, namespace)

    async def run():
        async with open_store() as store:
            return await ApiClient(store).get(kind, key)

    data = _run(run()).to_dict()
    if output == "json":
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


@cli.command(name="list")
@click.argument("kind")
@click.option("--namespace", "-n", default=None, help="Namespace (default: all)")
@click.option("--selector", "-l", multiple=True, help="Label filter KEY=VALUE")
def list_objects(kind, namespace, selector):
    """List objects of a kind"""
    labels = _parse_pairs(selector, "--selector")

    async def run():
        async with open_store() as store:
            return await ApiClient(store).list(
                kind, namespace=namespace, labels=labels or None
            )

    items = _run(run())
    if not items:
        click.echo(f"No {kind} objects found")
        return

    headers = ["Namespace", "Name", "Version", "Generation", "Finalizers", "Deleting"]
    rows = [
        [
            obj.namespace,
            obj.name,
            obj.resource_version,
            obj.generation,
            ",".join(obj.finalizers) or "-",
            "✓" if obj.is_deleting else "",
        ]
        for obj in items
    ]
    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.argument("annotations", nargs=-1, required=True)
@click.option("--namespace", "-n", default="default")
def annotate(kind, name, annotations, namespace):
    """Set annotations KEY=VALUE on an object"""
    key = _object_key(name, namespace)
    values = _parse_pairs(annotations, "ANNOTATIONS")

    async def run():
        async with open_store() as store:
            client = ApiClient(store)
            obj = await client.get(kind, key)
            for annotation, value in values.items():
                set_annotation(obj, annotation, value)
            await client.update(obj)
            return obj

    obj = _run(run())
    click.echo(f"{kind} {obj.key} annotated (version {obj.resource_version})")


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.confirmation_option(prompt="Are you sure you want to delete this object?")
def delete(kind, name, namespace):
    """Delete an object (finalizers run first)"""
    key = _object_key(name, namespace)

    async def run():
        async with open_store() as store:
            client = ApiClient(store)
            obj = await client.get(kind, key)
            await client.delete(obj)
            return obj

    obj = _run(run())
    if obj.finalizers:
        click.echo(
            f"{kind} {obj.key} marked for deletion, "
            f"waiting on: {', '.join(obj.finalizers)}"
        )
    else:
        click.echo(f"{kind} {obj.key} deleted")


@cli.command(name="exec", context_settings={"ignore_unknown_options": True})
@click.argument("namespace")
@click.argument("pod")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--container", "-c", default=None)
def exec_command(namespace, pod, command, container):
    """Run COMMAND in a pod, e.g. exec default web -- ls -la"""
    executor = PodExecutor(
        ExecConfig.from_env(),
        ObjectKey(namespace, pod),
        command,
        container=container,
    )
    try:
        asyncio.run(
            executor.execute(
                click.get_binary_stream("stdout"), click.get_binary_stream("stderr")
            )
        )
    except ExecError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
