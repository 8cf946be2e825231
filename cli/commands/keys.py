"""
Key commands: generate, show, bundle, one-time, verify-bundle
"""

import json
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from devicetrust.core.config import Settings
from devicetrust.core.errors import DeviceTrustError
from devicetrust.core.ids import fingerprint
from devicetrust.keys import FileSecretStorage, IdentityKeyStore

app = typer.Typer()
console = Console()


def _key_dir(key_dir: Optional[str]) -> str:
    return key_dir or Settings.from_env().key_dir


def _fail(message: str, json_output: bool, code: int = 1) -> None:
    if json_output:
        print(json.dumps({"error": message}))
    else:
        console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code)


def _load_store(key_dir: Optional[str], json_output: bool) -> IdentityKeyStore:
    directory = _key_dir(key_dir)
    store = IdentityKeyStore(storage=FileSecretStorage(directory), default_algorithms=Settings.from_env().algorithms)
    try:
        loaded = store.load_identity_keys()
    except DeviceTrustError as e:
        _fail(str(e), json_output, 2)
    if not loaded:
        _fail(f"No identity keys in {directory} (run 'devicetrust keys generate')", json_output)
    return store


def _print_identity(public: dict, directory: str) -> None:
    table = Table(title="Identity keys")
    table.add_column("Algorithm", style="cyan")
    table.add_column("Public key")
    table.add_column("Fingerprint", style="dim")
    for alg, key in sorted(public.items()):
        table.add_row(alg, key, fingerprint(key))
    console.print(table)
    console.print(f"  Directory: [cyan]{directory}[/cyan]")


@app.command()
def generate(
    key_dir: Optional[str] = typer.Option(None, "--dir", "-d", help="Key directory (default: DEVICETRUST_KEY_DIR)"),
    force: bool = typer.Option(False, "--force", help="Replace existing identity keys"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Generate and persist device identity keys.

    Examples:
        devicetrust keys generate
        devicetrust keys generate --dir ./keys --force
    """
    directory = _key_dir(key_dir)
    storage = FileSecretStorage(directory)
    try:
        if storage.load_identity() is not None and not force:
            _fail(f"Identity keys already exist in {directory} (use --force to replace)", json_output)
        with IdentityKeyStore(storage=storage) as store:
            public = store.generate_identity_keys()
    except DeviceTrustError as e:
        _fail(str(e), json_output, 2)

    if json_output:
        print(json.dumps({"success": True, "directory": directory, "keys": public}, indent=2))
    else:
        console.print("[green]✓ Identity keys generated[/green]")
        _print_identity(public, directory)


@app.command()
def show(
    key_dir: Optional[str] = typer.Option(None, "--dir", "-d", help="Key directory"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show public identity keys and their fingerprints."""
    directory = _key_dir(key_dir)
    with _load_store(key_dir, json_output) as store:
        public = store.identity_keys

    if json_output:
        print(json.dumps({
            "directory": directory,
            "keys": public,
            "fingerprints": {alg: fingerprint(key) for alg, key in public.items()},
        }, indent=2))
    else:
        _print_identity(public, directory)


@app.command()
def bundle(
    user_id: str = typer.Option(..., "--user", "-u", help="Owning user id"),
    device_id: str = typer.Option(..., "--device", help="Device id"),
    key_dir: Optional[str] = typer.Option(None, "--dir", "-d", help="Key directory"),
    output: Optional[str] = typer.Option(None, "--out", "-o", help="Write bundle to file"),
):
    """
    Print the signed device key bundle as JSON.

    Examples:
        devicetrust keys bundle --user @alice:example.org --device ALICEDEV
        devicetrust keys bundle -u @alice:example.org --device ALICEDEV -o bundle.json
    """
    with _load_store(key_dir, json_output=True) as store:
        try:
            data = store.build_device_key_bundle(user_id, device_id).to_dict()
        except DeviceTrustError as e:
            _fail(str(e), json_output=True)

    text = json.dumps(data, indent=2, ensure_ascii=False)
    if output:
        with open(output, "w") as f:
            f.write(text + "\n")
        console.print(f"[green]✓ Bundle written to[/green] [cyan]{output}[/cyan]")
    else:
        print(text)


@app.command("one-time")
def one_time(
    user_id: str = typer.Option(..., "--user", "-u", help="Owning user id"),
    device_id: str = typer.Option(..., "--device", help="Device id"),
    count: Optional[int] = typer.Option(None, "--count", "-n", help="Keys to generate (default: DEVICETRUST_ONE_TIME_KEY_BATCH)"),
    key_dir: Optional[str] = typer.Option(None, "--dir", "-d", help="Key directory"),
):
    """
    Print a key upload body: device keys plus a batch of signed one-time keys.

    One-time private keys are not persisted; the output is a preview of what a
    running device uploads.
    """
    batch = count if count is not None else Settings.from_env().one_time_key_batch
    with _load_store(key_dir, json_output=True) as store:
        try:
            store.generate_one_time_keys(batch)
            upload = store.build_key_upload(user_id, device_id)
        except DeviceTrustError as e:
            _fail(str(e), json_output=True)

    print(json.dumps(upload, indent=2, ensure_ascii=False))


@app.command("verify-bundle")
def verify_bundle(
    path: str = typer.Argument(..., help="Bundle JSON file ('-' for stdin)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Check a device key bundle's self-signature.

    Exit code 0 if valid, 1 if not.
    """
    try:
        if path == "-":
            data = json.load(sys.stdin)
        else:
            with open(path, "r") as f:
                data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        _fail(f"Cannot read bundle: {e}", json_output, 2)
    if not isinstance(data, dict):
        _fail("Bundle must be a JSON object", json_output, 2)

    result = IdentityKeyStore.verify_device_key_bundle(data)

    if json_output:
        print(json.dumps({"valid": result.valid, "error": result.error}))
    elif result.valid:
        console.print(f"[green]✓ Bundle valid[/green] ({data.get('user_id')}/{data.get('device_id')})")
    else:
        console.print(f"[red]✗ Bundle invalid:[/red] {result.error}")

    if not result.valid:
        raise typer.Exit(1)
