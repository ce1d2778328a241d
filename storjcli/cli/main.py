"""Storj CLI - Main commands."""
import asyncio
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table

from storjcli import StorjClient, setup_logging
from storjcli.core.config import CLIConfig
from storjcli.core.exceptions import StorjError
from storjcli.core.keyring import FileKeyRing
from storjcli.core.transfer import ExclusionSet, PUSH, PULL

app = typer.Typer(
    name="storj",
    help="Storj bridge command line client",
    add_completion=False
)
console = Console()
# Logs go to stderr so stream-file can own stdout
log_console = Console(stderr=True)


def run_async(coro):
    """Run async function."""
    return asyncio.run(coro)


@contextmanager
def handle_errors():
    """Print storjcli errors in red and exit non-zero."""
    try:
        yield
    except StorjError as e:
        log_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def get_config(ctx: typer.Context) -> CLIConfig:
    if ctx.obj is None:
        ctx.obj = CLIConfig.from_env()
    return ctx.obj


def open_keyring(config: CLIConfig) -> FileKeyRing:
    """Unlock the key-ring, prompting for the pass-phrase if needed."""
    passphrase = config.keypass
    if not passphrase:
        passphrase = typer.prompt("Unlock your keyring", hide_input=True)
    return config.open_keyring(passphrase)


def make_client(config: CLIConfig, keyring=None) -> StorjClient:
    if not config.has_credentials:
        log_console.print("[yellow]No credentials found. Run 'storj login' first.[/yellow]")
    return StorjClient(config.bridge_config(), keyring)


def format_size(size: int) -> str:
    return f"{size:,}"


@app.callback()
def main(
    ctx: typer.Context,
    url: str = typer.Option(None, "--url", "-u", help="Bridge URL (default STORJ_BRIDGE)"),
    keypass: str = typer.Option(None, "--keypass", "-k", help="Key-ring pass-phrase (default STORJ_KEYPASS)"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Show debug output"),
):
    """Upload, download and manage files on the Storj network."""
    setup_logging(
        logging.DEBUG if debug else logging.INFO,
        handler=RichHandler(console=log_console, show_path=False)
    )
    ctx.obj = CLIConfig.from_env(bridge_url=url, keypass=keypass)


# Account

@app.command()
def login(
    ctx: typer.Context,
    email: str = typer.Option(None, "--email", "-e", help="Bridge account email"),
    password: str = typer.Option(None, "--password", "-p", help="Bridge account password"),
):
    """Verify bridge credentials and save them."""
    config = get_config(ctx)
    if not email:
        email = typer.prompt("Email")
    if not password:
        password = typer.prompt("Password", hide_input=True)

    async def do_login():
        config.user = email
        config.password = password
        async with make_client(config) as storj:
            await storj.list_buckets()

    with handle_errors():
        run_async(do_login())
        path = config.save_credentials(email, password)
    console.print(f"[green]Logged in as {email}[/green]")
    console.print(f"Credentials saved to: {path}")


@app.command()
def logout(ctx: typer.Context):
    """Forget saved bridge credentials."""
    if get_config(ctx).clear_credentials():
        console.print("[green]Logged out successfully[/green]")
    else:
        console.print("[yellow]No saved credentials[/yellow]")


@app.command()
def register(
    ctx: typer.Context,
    email: str = typer.Option(None, "--email", "-e", help="Email for the new account"),
    password: str = typer.Option(None, "--password", "-p", help="Password for the new account"),
):
    """Register a new bridge account."""
    config = get_config(ctx)
    if not email:
        email = typer.prompt("Email")
    if not password:
        password = typer.prompt("Password", hide_input=True, confirmation_prompt=True)

    async def do_register():
        async with make_client(config) as storj:
            return await storj.register(email, password)

    with handle_errors():
        run_async(do_register())
    console.print(f"[green]Registered {email}, check your email to activate the account[/green]")


@app.command("reset-password")
def reset_password(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    password: str = typer.Option(None, "--password", "-p", help="New password"),
):
    """Request an account password reset email."""
    config = get_config(ctx)
    if not password:
        password = typer.prompt("New password", hide_input=True, confirmation_prompt=True)

    async def do_reset():
        async with make_client(config) as storj:
            return await storj.reset_password(email, password)

    with handle_errors():
        run_async(do_reset())
    console.print(f"[green]Password reset requested, check {email} to confirm[/green]")


@app.command("get-info")
def get_info(ctx: typer.Context):
    """Show bridge API information."""
    config = get_config(ctx)

    async def do_info():
        async with make_client(config) as storj:
            return await storj.get_info()

    with handle_errors():
        info = run_async(do_info())

    info = info if isinstance(info, dict) else {}
    details = info.get('info') or {}
    console.print(f"Title:       {details.get('title', '-')}")
    console.print(f"Description: {details.get('description', '-')}")
    console.print(f"Version:     {details.get('version', '-')}")
    console.print(f"Host:        {info.get('host', config.bridge_url)}")


# Buckets

@app.command("list-buckets")
def list_buckets(ctx: typer.Context):
    """List your buckets."""
    config = get_config(ctx)

    async def do_list():
        async with make_client(config) as storj:
            return await storj.list_buckets()

    with handle_errors():
        buckets = run_async(do_list())

    if not buckets:
        console.print("[yellow]You have not created any buckets.[/yellow]")
        return

    table = Table()
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Storage", justify="right")
    table.add_column("Transfer", justify="right")
    for bucket in buckets:
        table.add_row(bucket.id, bucket.name, format_size(bucket.storage), format_size(bucket.transfer))
    console.print(table)


@app.command("get-bucket")
def get_bucket(ctx: typer.Context, bucket_id: str = typer.Argument(..., help="Bucket id")):
    """Show one bucket."""
    config = get_config(ctx)

    async def do_get():
        async with make_client(config) as storj:
            return await storj.get_bucket(bucket_id)

    with handle_errors():
        bucket = run_async(do_get())
    console.print(
        f"ID: {bucket.id}, Name: {bucket.name}, "
        f"Storage: {bucket.storage}, Transfer: {bucket.transfer}"
    )


@app.command("add-bucket")
def add_bucket(ctx: typer.Context, name: str = typer.Argument(..., help="Bucket name")):
    """Create a bucket."""
    config = get_config(ctx)

    async def do_add():
        async with make_client(config) as storj:
            return await storj.add_bucket(name)

    with handle_errors():
        bucket = run_async(do_add())
    console.print(f"[green]Created bucket {bucket.name} ({bucket.id})[/green]")


@app.command("remove-bucket")
def remove_bucket(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Delete a bucket."""
    config = get_config(ctx)
    if not force and not typer.confirm(f"Are you sure you want to destroy bucket {bucket_id}?"):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(0)

    async def do_remove():
        async with make_client(config) as storj:
            await storj.remove_bucket(bucket_id)

    with handle_errors():
        run_async(do_remove())
    console.print(f"[green]Bucket {bucket_id} was destroyed[/green]")


@app.command("update-bucket")
def update_bucket(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    name: Optional[str] = typer.Argument(None, help="New name"),
    storage: Optional[int] = typer.Argument(None, help="Storage limit"),
    transfer: Optional[int] = typer.Argument(None, help="Transfer limit"),
):
    """Rename a bucket or change its limits."""
    config = get_config(ctx)

    async def do_update():
        async with make_client(config) as storj:
            return await storj.update_bucket(bucket_id, name=name, storage=storage, transfer=transfer)

    with handle_errors():
        bucket = run_async(do_update())
    console.print(
        f"ID: {bucket.id}, Name: {bucket.name}, "
        f"Storage: {bucket.storage}, Transfer: {bucket.transfer}"
    )


# Frames

@app.command("add-frame")
def add_frame(ctx: typer.Context):
    """Create a file staging frame."""
    config = get_config(ctx)

    async def do_add():
        async with make_client(config) as storj:
            return await storj.add_frame()

    with handle_errors():
        frame = run_async(do_add())
    console.print(f"ID: {frame.id}, Created: {frame.created}")


@app.command("list-frames")
def list_frames(ctx: typer.Context):
    """List your file staging frames."""
    config = get_config(ctx)

    async def do_list():
        async with make_client(config) as storj:
            return await storj.list_frames()

    with handle_errors():
        frames = run_async(do_list())

    if not frames:
        console.print("[yellow]There are no frames to list.[/yellow]")
        return

    table = Table()
    table.add_column("ID", style="dim")
    table.add_column("Created")
    table.add_column("Shards", justify="right")
    for frame in frames:
        table.add_row(frame.id, str(frame.created or '-'), str(frame.shard_count))
    console.print(table)


@app.command("get-frame")
def get_frame(ctx: typer.Context, frame_id: str = typer.Argument(..., help="Frame id")):
    """Show one file staging frame."""
    config = get_config(ctx)

    async def do_get():
        async with make_client(config) as storj:
            return await storj.get_frame(frame_id)

    with handle_errors():
        frame = run_async(do_get())
    console.print(f"ID: {frame.id}, Created: {frame.created}, Shards: {frame.shard_count}")


@app.command("remove-frame")
def remove_frame(
    ctx: typer.Context,
    frame_id: str = typer.Argument(..., help="Frame id"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Delete a file staging frame."""
    config = get_config(ctx)
    if not force and not typer.confirm(f"Are you sure you want to destroy frame {frame_id}?"):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(0)

    async def do_remove():
        async with make_client(config) as storj:
            await storj.remove_frame(frame_id)

    with handle_errors():
        run_async(do_remove())
    console.print(f"[green]Frame {frame_id} was destroyed[/green]")


# Files

@app.command("list-files")
def list_files(ctx: typer.Context, bucket_id: str = typer.Argument(..., help="Bucket id")):
    """List the files in a bucket."""
    config = get_config(ctx)

    async def do_list():
        async with make_client(config) as storj:
            return await storj.list_files(bucket_id)

    with handle_errors():
        files = run_async(do_list())

    if not files:
        console.print("[yellow]There are no files in this bucket.[/yellow]")
        return

    table = Table()
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Type", style="cyan")
    table.add_column("Size", justify="right")
    for meta in files:
        table.add_row(meta.id, meta.filename, meta.mimetype, format_size(meta.size))
    console.print(table)


@app.command("get-file-info")
def get_file_info(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    file_id: str = typer.Argument(..., help="File id"),
):
    """Show one file's metadata."""
    config = get_config(ctx)

    async def do_get():
        async with make_client(config) as storj:
            return await storj.get_file_info(bucket_id, file_id)

    with handle_errors():
        meta = run_async(do_get())
    console.print(
        f"Name: {meta.filename}, Type: {meta.mimetype}, "
        f"Size: {meta.size} bytes, ID: {meta.id}"
    )


@app.command("remove-file")
def remove_file(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    file_id: str = typer.Argument(..., help="File id"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Delete a file and its key-ring entry."""
    config = get_config(ctx)
    if not force and not typer.confirm(f"Are you sure you want to destroy file {file_id}?"):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(0)

    async def do_remove():
        async with make_client(config, open_keyring(config)) as storj:
            await storj.remove_file(bucket_id, file_id)

    with handle_errors():
        run_async(do_remove())
    console.print(f"[green]File {file_id} was removed[/green]")


@app.command("create-mirrors")
def create_mirrors(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    file_id: str = typer.Argument(..., help="File id"),
    redundancy: int = typer.Option(3, "--redundancy", "-r", help="Mirrors to create per shard (1-12)"),
):
    """Replicate a file's shards to more farmers."""
    config = get_config(ctx)

    async def do_mirror():
        async with make_client(config) as storj:
            return await storj.create_mirrors(bucket_id, file_id, redundancy)

    with handle_errors():
        replicas = run_async(do_mirror())
    for index, mirrors in enumerate(replicas):
        console.print(f"Shard {index} establishing mirrors to {len(mirrors)} nodes")


@app.command("upload-file")
def upload_file(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    file_paths: List[str] = typer.Argument(..., help="Files or glob patterns"),
    concurrency: int = typer.Option(3, "--concurrency", "-c", help="Shards uploaded at once per file"),
    fileconcurrency: int = typer.Option(1, "--fileconcurrency", "-C", help="Files uploaded at once"),
):
    """Encrypt and upload files to a bucket."""
    config = get_config(ctx)

    def on_committed(job, meta):
        console.print(f"[green]Uploaded {job.source} as {meta.filename} ({meta.id})[/green]")

    async def do_upload():
        async with make_client(config, open_keyring(config)) as storj:
            return await storj.upload(
                bucket_id,
                file_paths,
                file_concurrency=fileconcurrency,
                shard_concurrency=concurrency,
                on_event={'committed': on_committed}
            )

    with handle_errors():
        report = run_async(do_upload())
    console.print(f"[green]{len(report.uploaded)} file(s) uploaded[/green]")


@app.command("download-file")
def download_file(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    file_id: str = typer.Argument(..., help="File id"),
    file_path: str = typer.Argument(..., help="Destination file or existing folder"),
    exclude: str = typer.Option(None, "--exclude", "-x", help="Comma separated farmer node ids to avoid"),
):
    """Download and decrypt a file."""
    config = get_config(ctx)
    excluded = ExclusionSet.parse(exclude)

    async def do_download():
        async with make_client(config, open_keyring(config)) as storj:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=log_console
            ) as progress:
                task = progress.add_task(f"Downloading {file_id}", total=None)

                def on_progress(received: int, total: Optional[int]):
                    progress.update(task, completed=received, total=total)

                return await storj.download(
                    bucket_id,
                    file_id,
                    file_path,
                    excluded_peers=excluded,
                    progress_callback=on_progress
                )

    with handle_errors():
        path = run_async(do_download())
    console.print(f"[green]File downloaded and written to {path}.[/green]")


@app.command("stream-file")
def stream_file(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    file_id: str = typer.Argument(..., help="File id"),
    exclude: str = typer.Option(None, "--exclude", "-x", help="Comma separated farmer node ids to avoid"),
):
    """Decrypt a file to stdout."""
    config = get_config(ctx)
    excluded = ExclusionSet.parse(exclude)

    async def do_stream():
        async with make_client(config, open_keyring(config)) as storj:
            await storj.stream(bucket_id, file_id, sys.stdout.buffer, excluded_peers=excluded)

    with handle_errors():
        run_async(do_stream())


@app.command("create-token")
def create_token(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    operation: str = typer.Argument(PUSH, help="PUSH or PULL"),
):
    """Create a push or pull token."""
    config = get_config(ctx)
    operation = operation.upper()
    if operation not in (PUSH, PULL):
        log_console.print(f"[red]Invalid operation {operation}, use PUSH or PULL[/red]")
        raise typer.Exit(1)

    async def do_create():
        async with make_client(config) as storj:
            return await storj.create_token(bucket_id, operation)

    with handle_errors():
        token = run_async(do_create())
    console.print(f"Token: {token.token}, Bucket: {token.bucket}, Operation: {token.operation}")


@app.command("get-pointers")
def get_pointers(
    ctx: typer.Context,
    bucket_id: str = typer.Argument(..., help="Bucket id"),
    file_id: str = typer.Argument(..., help="File id"),
    skip: int = typer.Option(0, "--skip", "-s", help="Index of the first shard"),
    limit: int = typer.Option(6, "--limit", "-n", help="Number of shards"),
    exclude: str = typer.Option(None, "--exclude", "-x", help="Comma separated farmer node ids to avoid"),
):
    """Show where a file's shards are stored."""
    config = get_config(ctx)

    async def do_get():
        async with make_client(config) as storj:
            return await storj.get_pointers(
                bucket_id, file_id, skip=skip, limit=limit,
                exclude=ExclusionSet.parse(exclude).to_list()
            )

    with handle_errors():
        pointers = run_async(do_get())

    if not pointers:
        console.print("[yellow]There are no pointers to return for that range[/yellow]")
        return

    table = Table()
    table.add_column("Index", justify="right")
    table.add_column("Hash", style="dim")
    table.add_column("Farmer")
    table.add_column("Address")
    for pointer in pointers:
        table.add_row(
            str(pointer.index),
            pointer.hash,
            pointer.farmer.node_id,
            f"{pointer.farmer.address}:{pointer.farmer.port}"
        )
    console.print(table)


# Contacts

@app.command("list-contacts")
def list_contacts(
    ctx: typer.Context,
    page: int = typer.Argument(1, help="Result page"),
    connected: bool = typer.Option(False, "--connected", "-c", help="Only connected nodes"),
):
    """List the farmers known to the bridge."""
    config = get_config(ctx)

    async def do_list():
        async with make_client(config) as storj:
            return await storj.list_contacts(page, connected=connected)

    with handle_errors():
        contacts = run_async(do_list())

    if not contacts:
        console.print("[yellow]There are no contacts to show[/yellow]")
        return

    table = Table()
    table.add_column("Node", style="dim")
    table.add_column("Address")
    table.add_column("Last Seen")
    table.add_column("Protocol")
    for contact in contacts:
        table.add_row(
            contact.node_id,
            f"{contact.address}:{contact.port}",
            str(contact.last_seen or '-'),
            contact.protocol or '?'
        )
    console.print(table)


@app.command("get-contact")
def get_contact(ctx: typer.Context, node_id: str = typer.Argument(..., help="Farmer node id")):
    """Show the contact information of one farmer."""
    config = get_config(ctx)

    async def do_get():
        async with make_client(config) as storj:
            return await storj.get_contact(node_id)

    with handle_errors():
        contact = run_async(do_get())
    console.print(f"Contact:   {contact.address}:{contact.port}")
    console.print(f"Node:      {contact.node_id}")
    console.print(f"Last Seen: {contact.last_seen or '-'}")
    console.print(f"Protocol:  {contact.protocol or '?'}")


# Key-ring

@app.command("export-keyring")
def export_keyring(
    ctx: typer.Context,
    directory: Path = typer.Argument(..., help="Existing folder to export into"),
):
    """Copy the encrypted key-ring into a folder."""
    config = get_config(ctx)
    with handle_errors():
        target = open_keyring(config).export_to(directory)
    console.print(f"[green]Key-ring exported to {target}[/green]")


@app.command("import-keyring")
def import_keyring(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Key-ring file to import"),
    passphrase: str = typer.Option(None, "--passphrase", "-p", help="Pass-phrase of the imported key-ring"),
):
    """Merge another key-ring into yours."""
    config = get_config(ctx)
    with handle_errors():
        keyring = open_keyring(config)
        if not passphrase:
            passphrase = typer.prompt("Pass-phrase of the imported keyring", hide_input=True)
        added = keyring.import_from(path, passphrase)
    console.print(f"[green]Imported {added} key-ring entries[/green]")


@app.command("change-keyring")
def change_keyring(
    ctx: typer.Context,
    new_passphrase: str = typer.Option(None, "--new-passphrase", help="New pass-phrase"),
):
    """Change the key-ring pass-phrase."""
    config = get_config(ctx)
    with handle_errors():
        keyring = open_keyring(config)
        if not new_passphrase:
            new_passphrase = typer.prompt("New pass-phrase", hide_input=True, confirmation_prompt=True)
        keyring.change_passphrase(new_passphrase)
    console.print("[green]Key-ring pass-phrase changed[/green]")


@app.command("reset-keyring")
def reset_keyring(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Delete every key-ring entry."""
    config = get_config(ctx)
    if not force and not typer.confirm("Files uploaded so far will become undecryptable. Continue?"):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(0)
    with handle_errors():
        open_keyring(config).reset()
    console.print("[green]Key-ring reset[/green]")


if __name__ == "__main__":
    app()
