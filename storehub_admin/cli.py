"""
Admin CLI for the StoreHub build worker.

Provides commands for preparing the database, registering job owners and
component versions, and enqueueing and inspecting build jobs.
"""

import asyncio
import json
import os
import sys
import uuid
from datetime import UTC, datetime

import click

from storehub_common.crypto import encrypt_token
from storehub_common.errors import TokenCipherError
from storehub_common.models import (
    BuildJob,
    BuildRepo,
    BuildStatus,
    ComponentVersion,
    User,
    version_state_for,
)
from storehub_persistence.sqlite_repository import SQLiteJobRepository


def get_db_path() -> str:
    """Get the database path from environment variable or default."""
    return os.environ.get("STOREHUB_DB_PATH", "storehub.db")


def get_repository() -> SQLiteJobRepository:
    """Get the repository instance."""
    return SQLiteJobRepository(get_db_path())


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


@click.group()
def cli():
    """StoreHub Admin - Manage users, versions and build jobs."""
    pass


@cli.group()
def user():
    """Manage job owners."""
    pass


@cli.group()
def version():
    """Manage component versions."""
    pass


@cli.group()
def job():
    """Enqueue and inspect build jobs."""
    pass


@cli.command("init-db")
def init_db():
    """Create the database schema."""

    async def init():
        repo = get_repository()
        await repo.initialize()
        await repo.close()

    run_async(init())
    click.echo(f"✓ Database initialized: {get_db_path()}")


# ============================================================================
# User Commands
# ============================================================================


@user.command("add")
@click.option("--provider-id", required=True, help="Source host user ID")
@click.option("--username", default="", help="Source host login")
@click.option("--token", default=None, help="Access token (stored encrypted)")
def user_add(provider_id: str, username: str, token: str | None):
    """Register a job owner, optionally with an access token."""
    encrypted = None
    if token:
        try:
            encrypted = encrypt_token(token)
        except TokenCipherError as e:
            click.echo(f"Error: Cannot encrypt token: {e}", err=True)
            sys.exit(1)

    async def add():
        repo = get_repository()
        await repo.initialize()

        try:
            if await repo.get_user(provider_id):
                click.echo(f"Error: User already exists: {provider_id}", err=True)
                sys.exit(1)

            user_obj = User(
                provider_id=provider_id,
                username=username,
                access_token=encrypted,
                created_at=datetime.now(UTC),
            )
            await repo.create_user(user_obj)

            click.echo("✓ User created successfully")
            click.echo(f"  Provider ID: {user_obj.provider_id}")
            click.echo(f"  Username:    {user_obj.username or '(none)'}")
            click.echo(f"  Token:       {'stored' if encrypted else '(none)'}")

        finally:
            await repo.close()

    run_async(add())


# ============================================================================
# Version Commands
# ============================================================================


@version.command("add")
@click.argument("component_id")
@click.argument("version_str", metavar="VERSION")
@click.option("--commit", "commit_sha", default="", help="Commit the version was cut from")
@click.option("--created-by", default="", help="Provider ID of the author")
def version_add(component_id: str, version_str: str, commit_sha: str, created_by: str):
    """Register a component version."""

    async def add():
        repo = get_repository()
        await repo.initialize()

        try:
            if await repo.get_version(component_id, version_str):
                click.echo(
                    f"Error: Version already exists: {component_id}@{version_str}",
                    err=True,
                )
                sys.exit(1)

            version_obj = ComponentVersion(
                id=str(uuid.uuid4()),
                component_id=component_id,
                version=version_str,
                commit_sha=commit_sha,
                created_by=created_by,
            )
            await repo.create_version(version_obj)

            click.echo("✓ Version created successfully")
            click.echo(f"  ID:        {version_obj.id}")
            click.echo(f"  Component: {component_id}")
            click.echo(f"  Version:   {version_str}")

        finally:
            await repo.close()

    run_async(add())


# ============================================================================
# Job Commands
# ============================================================================


@job.command("enqueue")
@click.option("--component-id", required=True, help="Component ID")
@click.option("--component", required=True, help="Component slug")
@click.option("--version", "version_str", required=True, help="Version to build")
@click.option("--owner", required=True, help="Provider ID of the job owner")
@click.option("--repo-owner", required=True, help="Repository owner")
@click.option("--repo", "repo_name", required=True, help="Repository name")
@click.option("--path", "repo_path", default="", help="Folder inside the repository")
@click.option("--ref", default="", help="Branch or tag")
@click.option("--commit", default="", help="Pinned commit SHA")
def job_enqueue(
    component_id: str,
    component: str,
    version_str: str,
    owner: str,
    repo_owner: str,
    repo_name: str,
    repo_path: str,
    ref: str,
    commit: str,
):
    """Enqueue a build job for a component version."""

    async def enqueue():
        repo = get_repository()
        await repo.initialize()

        try:
            if not await repo.get_version(component_id, version_str):
                click.echo(
                    f"Error: Version not found: {component_id}@{version_str}", err=True
                )
                sys.exit(1)

            now = datetime.now(UTC)
            job_obj = BuildJob(
                id=str(uuid.uuid4()),
                component_id=component_id,
                component=component,
                version=version_str,
                owner_id=owner,
                repo=BuildRepo(
                    owner=repo_owner,
                    repo=repo_name,
                    path=repo_path,
                    ref=ref,
                    commit=commit,
                ),
                status=BuildStatus.QUEUED,
                logs=["enqueued"],
                created_at=now,
                updated_at=now,
            )
            await repo.create_job(job_obj)
            await repo.set_version_build_state(
                component_id, version_str, version_state_for(BuildStatus.QUEUED)
            )

            click.echo("✓ Job enqueued")
            click.echo(f"  Job ID: {job_obj.id}")

        finally:
            await repo.close()

    run_async(enqueue())


@job.command("show")
@click.argument("job_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def job_show(job_id: str, json_output: bool):
    """Show a job with its log."""

    async def show():
        repo = get_repository()
        await repo.initialize()

        try:
            job_obj = await repo.get_job(job_id)
            if not job_obj:
                click.echo(f"Error: Job not found: {job_id}", err=True)
                sys.exit(1)

            if json_output:
                click.echo(json.dumps(job_obj.to_dict(), indent=2))
                return

            click.echo("\nJob Details:")
            click.echo(f"  ID:        {job_obj.id}")
            click.echo(f"  Component: {job_obj.component}@{job_obj.version}")
            click.echo(f"  Status:    {job_obj.status.value}")
            click.echo(f"  Repo:      {job_obj.repo.owner}/{job_obj.repo.repo}")
            if job_obj.artifacts:
                click.echo(f"  Bundle:    {job_obj.artifacts.bundle_url}")
            click.echo("\nLog:")
            for line in job_obj.logs:
                click.echo(f"  {line}")
            click.echo()

        finally:
            await repo.close()

    run_async(show())


@job.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in BuildStatus]),
    default=None,
    help="Only list jobs in this status",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def job_list(status: str | None, json_output: bool):
    """List jobs, newest first."""

    async def list_jobs():
        repo = get_repository()
        await repo.initialize()

        try:
            jobs = await repo.list_jobs(BuildStatus(status) if status else None)

            if json_output:
                click.echo(json.dumps([j.to_summary_dict() for j in jobs], indent=2))
                return

            if not jobs:
                click.echo("No jobs found.")
                return

            click.echo(f"\n{'ID':<38} {'Component':<30} {'Status':<10}")
            click.echo("-" * 80)
            for j in jobs:
                label = f"{j.component}@{j.version}"
                click.echo(f"{j.id:<38} {label:<30} {j.status.value:<10}")
            click.echo()

        finally:
            await repo.close()

    run_async(list_jobs())


if __name__ == "__main__":
    cli()
