import asyncio
import json
import os
from datetime import datetime
from typing import List, Optional
import typer
from rich.console import Console
from rich.table import Table
from livesync.client import LiveSyncClient
from livesync.config.loader import load_config
from livesync.config.schema import ClientCfg
from livesync.offline.action_log import ActionLog
from livesync.offline.mirror import RedisMirror
from livesync.offline.redis_transport import RedisTransport
from livesync.offline.replay import ReplayCoordinator
from livesync.transport.contracts import Identity, Job, StreamSession
from livesync.util.logging import set_level
from livesync.util.types import Result

app = typer.Typer(add_completion=False, help="LiveSync client - job progress, conversation streams and the offline queue")
queue_app = typer.Typer(add_completion=False, help="Inspect and replay the offline action queue")
app.add_typer(queue_app, name="queue")

console = Console()


def _fail(res: Result) -> None:
    typer.echo(f"[error] {res.error.code}: {res.error.message}")
    raise typer.Exit(code=1)


def _setup(log_level: str, cwd: str, url: Optional[str] = None, base_url: Optional[str] = None,
           queue_path: Optional[str] = None) -> ClientCfg:
    try:
        set_level(log_level)
    except ValueError as e:
        typer.echo(f"[error] {e}")
        raise typer.Exit(code=2)

    overrides = {}
    if url:
        overrides.setdefault("push", {})["url"] = url
    if base_url:
        overrides.setdefault("requests", {})["base_url"] = base_url
    if queue_path:
        overrides.setdefault("queue", {})["path"] = queue_path

    res = load_config(cwd, overrides=overrides)
    if not res.ok:
        _fail(res)
    return res.value


def _identity(token: Optional[str], user: str) -> Identity:
    token = token or os.environ.get("LIVESYNC_TOKEN", "")
    if not token:
        typer.echo("[error] --token or LIVESYNC_TOKEN is required")
        raise typer.Exit(code=1)
    return Identity(user_id=user, token=token)


@app.command("watch-job")
def watch_job(job_id: str = typer.Argument(..., help="Job to follow"),
              url: Optional[str] = typer.Option(None, "--url", help="Push channel URL"),
              token: Optional[str] = typer.Option(None, "--token", help="Auth token (default: $LIVESYNC_TOKEN)"),
              user: str = typer.Option("cli", "--user"),
              timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after N seconds"),
              cwd: str = typer.Option(".", "--cwd"),
              log_level: str = typer.Option("warn", "--log-level")):
    """Follow a job until it completes or fails."""
    cfg = _setup(log_level, cwd, url=url)
    identity = _identity(token, user)

    def show(job: Job) -> None:
        line = f"{job.status.value:<10} {job.progress:>3}%  {job.message}"
        if job.stage:
            line += f"  [{job.stage}]"
        console.print(line)

    async def run() -> Result[Job]:
        async with LiveSyncClient(cfg) as client:
            res = await client.connect(identity)
            if not res.ok:
                return res
            tracker = await client.track_job(job_id)
            tracker.watch(show)
            try:
                job = await tracker.wait(timeout=timeout)
            except asyncio.TimeoutError:
                return Result.failure("cli.timeout", f"job {job_id} did not finish within {timeout}s")
            return Result.success(job)

    res = asyncio.run(run())
    if not res.ok:
        _fail(res)
    job = res.value
    if job.is_error:
        raise typer.Exit(code=3)
    if job.result is not None:
        console.print_json(json.dumps(job.result, default=str))


@app.command("watch-chat")
def watch_chat(session_id: str = typer.Argument(..., help="Conversation to follow"),
               message: Optional[str] = typer.Option(None, "--message", "-m", help="Send this message after joining"),
               url: Optional[str] = typer.Option(None, "--url", help="Push channel URL"),
               token: Optional[str] = typer.Option(None, "--token", help="Auth token (default: $LIVESYNC_TOKEN)"),
               user: str = typer.Option("cli", "--user"),
               cwd: str = typer.Option(".", "--cwd"),
               log_level: str = typer.Option("warn", "--log-level")):
    """Print a conversation stream as it arrives; exits after the first finalized message or error."""
    cfg = _setup(log_level, cwd, url=url)
    identity = _identity(token, user)

    async def run() -> Result[StreamSession]:
        done: asyncio.Future = asyncio.get_running_loop().create_future()
        printed = {"chars": 0}

        def show(session: StreamSession) -> None:
            text = session.accumulated_content
            if len(text) < printed["chars"]:
                printed["chars"] = 0
            console.print(text[printed["chars"]:], end="", soft_wrap=True, highlight=False)
            printed["chars"] = len(text)
            if session.state.value in ("finalized", "error") and not done.done():
                done.set_result(session)

        async with LiveSyncClient(cfg) as client:
            res = await client.connect(identity)
            if not res.ok:
                return res
            tracker = await client.track_stream(session_id)
            tracker.watch(show)
            tracker.on_side_event(lambda ev: console.print(f"\n[dim]<{ev[0]}> {json.dumps(ev[1], default=str)}[/dim]"))
            if message:
                sent = await tracker.send_message(message)
                if not sent.ok:
                    return sent
            try:
                session = await done
            except asyncio.CancelledError:
                # Ctrl-C: ask the producer to stop before leaving
                await tracker.cancel()
                raise
            console.print()
            return Result.success(session)

    res = asyncio.run(run())
    if not res.ok:
        _fail(res)
    if res.value.error:
        typer.echo(f"[error] {res.value.error}")
        raise typer.Exit(code=3)


@queue_app.command("list")
def queue_list(queue_path: Optional[str] = typer.Option(None, "--queue-path"),
               as_json: bool = typer.Option(False, "--json", help="Print raw records"),
               cwd: str = typer.Option(".", "--cwd"),
               log_level: str = typer.Option("warn", "--log-level")):
    """Show queued actions in replay order."""
    cfg = _setup(log_level, cwd, queue_path=queue_path)
    actions = ActionLog(cfg.queue.path, cfg.queue.record_name).list()

    if as_json:
        typer.echo(json.dumps([a.to_record() for a in actions], indent=2, default=str))
        return
    if not actions:
        console.print("Queue is empty.")
        return

    table = Table(title=f"{len(actions)} queued action(s)")
    table.add_column("#", justify="right")
    table.add_column("id")
    table.add_column("method")
    table.add_column("target")
    table.add_column("queued at")
    for i, action in enumerate(actions, 1):
        when = datetime.fromtimestamp(action.enqueued_at).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(str(i), action.id[:8], action.method, action.target, when)
    console.print(table)


@queue_app.command("add")
def queue_add(target: str = typer.Argument(..., help="Request path or absolute URL"),
              method: str = typer.Option("POST", "--method", "-X"),
              data: Optional[str] = typer.Option(None, "--data", "-d", help="JSON payload"),
              header: List[str] = typer.Option([], "--header", "-H", help="Extra header as 'Name: value'"),
              queue_path: Optional[str] = typer.Option(None, "--queue-path"),
              cwd: str = typer.Option(".", "--cwd"),
              log_level: str = typer.Option("warn", "--log-level")):
    """Capture a write for later replay."""
    cfg = _setup(log_level, cwd, queue_path=queue_path)
    try:
        payload = json.loads(data) if data is not None else None
    except ValueError as e:
        typer.echo(f"[error] --data is not valid JSON: {e}")
        raise typer.Exit(code=2)

    headers = {}
    for h in header:
        name, sep, value = h.partition(":")
        if not sep:
            typer.echo(f"[error] bad header: {h}")
            raise typer.Exit(code=2)
        headers[name.strip()] = value.strip()

    res = ActionLog(cfg.queue.path, cfg.queue.record_name).enqueue(target, method, payload, headers or None)
    if not res.ok:
        _fail(res)
    typer.echo(res.value.id)


@queue_app.command("drain")
def queue_drain(base_url: Optional[str] = typer.Option(None, "--base-url", help="Prefix for relative targets"),
                queue_path: Optional[str] = typer.Option(None, "--queue-path"),
                cwd: str = typer.Option(".", "--cwd"),
                log_level: str = typer.Option("warn", "--log-level")):
    """Replay every queued action in order; stops at the first failure."""
    cfg = _setup(log_level, cwd, base_url=base_url, queue_path=queue_path)

    async def run() -> Result[int]:
        replay = ReplayCoordinator(ActionLog(cfg.queue.path, cfg.queue.record_name), cfg.requests,
                                   synced_display_sec=0)
        try:
            return await replay.drain()
        finally:
            await replay.close()

    res = asyncio.run(run())
    if not res.ok:
        _fail(res)
    typer.echo(f"replayed {res.value} action(s)")


@queue_app.command("clear")
def queue_clear(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
                queue_path: Optional[str] = typer.Option(None, "--queue-path"),
                cwd: str = typer.Option(".", "--cwd"),
                log_level: str = typer.Option("warn", "--log-level")):
    """Discard every queued action without replaying it."""
    cfg = _setup(log_level, cwd, queue_path=queue_path)
    action_log = ActionLog(cfg.queue.path, cfg.queue.record_name)
    size = action_log.size()
    if size and not yes:
        typer.confirm(f"Discard {size} queued action(s)?", abort=True)
    res = action_log.clear()
    if not res.ok:
        _fail(res)

    if cfg.mirror.enabled:
        mirror = RedisMirror(RedisTransport(cfg.mirror), cfg.queue.record_name)

        async def clear_mirror() -> Result[None]:
            try:
                return await mirror.clear()
            finally:
                await mirror.close()

        cleared = asyncio.run(clear_mirror())
        if not cleared.ok:
            typer.echo(f"[warn] mirror not cleared: {cleared.error.message}")
    typer.echo(f"cleared {size} action(s)")


@app.command()
def config(cwd: str = typer.Option(".", "--cwd"),
           log_level: str = typer.Option("warn", "--log-level")):
    """Print the effective configuration."""
    cfg = _setup(log_level, cwd)
    data = cfg.model_dump(mode="json")
    if data["mirror"].get("password"):
        data["mirror"]["password"] = "***"
    typer.echo(json.dumps(data, indent=2))


def main():
    app()

if __name__ == "__main__":
    main()
