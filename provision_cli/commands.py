"""
CLI command handlers and output formatting.
"""

import asyncio
import json
import sys
from datetime import datetime
from typing import Any, Dict, Optional

from rich.console import Console
from rich.progress_bar import ProgressBar
from rich.prompt import Confirm
from rich.table import Table

from .client import ApiError, PanelClient, PanelError
from .config import Config, ExitCode
from .rescue import RescueMonitor
from .state import Credentials, PollerState
from .status import CanonicalStatus
from .task import ReinstallMonitor, TaskPoller

console = Console()
err_console = Console(stderr=True)

STATUS_COLORS = {
    CanonicalStatus.IDLE: 'dim',
    CanonicalStatus.QUEUED: 'cyan',
    CanonicalStatus.PROVISIONING: 'cyan',
    CanonicalStatus.IMAGING: 'blue',
    CanonicalStatus.INSTALLING: 'blue',
    CanonicalStatus.CONFIGURING: 'magenta',
    CanonicalStatus.REBOOTING: 'yellow',
    CanonicalStatus.COMPLETE: 'green',
    CanonicalStatus.FAILED: 'red',
}


def _format_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime('%H:%M:%S')


class CLICommands:
    """Command handlers for the CLI interface."""

    def __init__(self, client: PanelClient, storage: Any, config: Config, output_format: str = 'table'):
        self.client = client
        self.storage = storage
        self.config = config
        self.output_format = output_format

    def _poll_options(self) -> Dict[str, Any]:
        return {
            'fast_interval': self.config.poll_fast_interval,
            'slow_interval': self.config.poll_slow_interval,
            'fast_ticks': self.config.poll_fast_ticks,
        }

    def _reinstall_monitor(self, server_id: str) -> ReinstallMonitor:
        return ReinstallMonitor(server_id, self.client, self.storage, **self._poll_options())

    def _rescue_monitor(self, server_id: str) -> RescueMonitor:
        return RescueMonitor(server_id, self.client, self.storage, **self._poll_options())

    def _run(self, coro):
        async def runner():
            try:
                return await coro
            finally:
                await self.client.aclose()
        return asyncio.run(runner())

    def _output_result(self, data: Any, table_func=None):
        """Output data in the requested format."""
        if self.output_format == 'json':
            print(json.dumps(data, indent=2))
        else:
            if table_func:
                table_func(data)
            else:
                console.print(data)

    def _map_exit_code(self, success: bool, message: str) -> int:
        if success:
            return ExitCode.SUCCESS.value
        ml = (message or '').lower()
        if 'timeout' in ml or 'timed out' in ml:
            return ExitCode.TIMEOUT.value
        if 'permission denied' in ml or 'unauthorized' in ml or 'forbidden' in ml:
            return ExitCode.PERMISSION_DENIED.value
        if 'not found' in ml:
            return ExitCode.NOT_FOUND.value
        return ExitCode.SERVER_ERROR.value

    def _emit_result(self, success: bool, message: str):
        code = self._map_exit_code(success, message)
        if self.output_format == 'json':
            self._output_result({'success': success, 'message': message})
        else:
            if success:
                console.print(f"[green]✓ {message}[/green]")
            else:
                err_console.print(f"[red]✗ {message}[/red]")
        if code != ExitCode.SUCCESS.value:
            sys.exit(code)

    def _emit_panel_error(self, action: str, error: PanelError):
        if isinstance(error, ApiError):
            if error.status_code in (401, 403):
                message = f"Permission denied: {error.message}"
            elif error.status_code == 404:
                message = f"Server not found: {error.message}"
            else:
                message = f"Failed to {action}: {error.message}"
        else:
            message = f"Failed to {action}: {error}"
        self._emit_result(False, message)

    def _maybe_confirm(self, args, prompt_text: str):
        if hasattr(args, 'yes'):
            if not args.yes and not Confirm.ask(prompt_text):
                sys.exit(ExitCode.SUCCESS.value)

    # Rendering

    def _render_state(self, state: PollerState, title: str):
        if not state.is_active:
            console.print(f"[yellow]No {title.lower()} task is being tracked[/yellow]")
            return

        color = STATUS_COLORS.get(state.status, 'white')
        console.print(f"\n[bold cyan]═══ {title} ═══[/bold cyan]\n")
        console.print(f"  Status: [{color}]{state.status.value}[/{color}]")
        if state.task_id:
            console.print(f"  Task: {state.task_id}")
        console.print(ProgressBar(total=100, completed=state.percent, width=40))
        console.print(f"  {state.percent}%")
        if state.error:
            console.print(f"  [red]Error: {state.error}[/red]")

        table = Table(title="Timeline")
        table.add_column("Time", style="dim", no_wrap=True)
        table.add_column("Status")
        table.add_column("Message")
        for event in state.timeline:
            event_color = STATUS_COLORS.get(event.status, 'white')
            table.add_row(
                _format_timestamp(event.timestamp),
                f"[{event_color}]{event.status.value}[/{event_color}]",
                event.message or '',
            )
        console.print(table)

    def _reveal_credentials(self, creds: Optional[Credentials]):
        if creds is None:
            return
        console.print("\n[bold]Access credentials[/bold]")
        console.print("[yellow]Save these credentials - they won't be shown again.[/yellow]")
        console.print(f"  Server IP: {creds.server_ip or 'N/A'}")
        console.print(f"  Username: {creds.username}")
        console.print(f"  Password: {creds.password}")

    def _state_output(self, state: PollerState) -> Dict[str, Any]:
        data = state.view()
        # Credentials only reach the terminal through the one-time reveal.
        data.pop('credentials', None)
        return data

    async def _follow(self, monitor: TaskPoller, title: str) -> PollerState:
        """Print transitions as they happen until the task is terminal."""
        seen = {'count': len(monitor.state.timeline)}

        def on_change(state: PollerState):
            if self.output_format == 'json':
                return
            for event in state.timeline[seen['count']:]:
                color = STATUS_COLORS.get(event.status, 'white')
                suffix = f" - {event.message}" if event.message else ''
                console.print(
                    f"[dim]{_format_timestamp(event.timestamp)}[/dim] "
                    f"[{color}]{event.status.value}[/{color}] ({state.percent}%){suffix}"
                )
            seen['count'] = len(state.timeline)

        unsubscribe = monitor.subscribe(on_change)
        try:
            if self.output_format != 'json':
                console.print(f"[dim]Following {title.lower()} of server {monitor.resource_id} (Ctrl+C to detach)[/dim]")
            state = await monitor.wait()
        finally:
            unsubscribe()
            monitor.deactivate()
        return state

    def _finish(self, state: PollerState, title: str):
        if self.output_format == 'json':
            # The final report doubles as the one-time credential reveal.
            self._output_result(state.view())
        else:
            self._render_state(state, title)
            self._reveal_credentials(state.credentials)
        if state.status == CanonicalStatus.FAILED:
            sys.exit(ExitCode.SERVER_ERROR.value)

    # Reinstall

    def reinstall(self, args):
        self._maybe_confirm(
            args, f"Reinstall server {args.server} with OS {args.os_id}? All data on the server will be lost"
        )

        async def run():
            monitor = self._reinstall_monitor(args.server)
            try:
                await monitor.begin(args.os_id, args.hostname)
            except PanelError as e:
                return e, None
            if not args.watch:
                # Pending credentials live only in this process; hand them out before detaching.
                creds = monitor.release_credentials()
                monitor.deactivate()
                return monitor.state, creds
            return await self._follow(monitor, 'Reinstall'), None

        state, creds = self._run(run())
        if isinstance(state, PanelError):
            self._emit_panel_error('reinstall server', state)
            return
        if args.watch:
            self._finish(state, 'Reinstall')
        elif self.output_format == 'json':
            data = self._state_output(state)
            if creds is not None:
                data['credentials'] = creds.to_dict()
            self._output_result(data)
        else:
            console.print(f"[green]✓ Reinstall of server {args.server} started[/green]")
            self._reveal_credentials(creds)
            console.print(f"[dim]Run 'provision-cli watch {args.server}' to follow progress[/dim]")

    def watch(self, args):
        async def run() -> PollerState:
            monitor = self._reinstall_monitor(args.server)
            state = await monitor.activate()
            if not state.is_running:
                monitor.deactivate()
                return state
            return await self._follow(monitor, 'Reinstall')

        state = self._run(run())
        self._finish(state, 'Reinstall')

    def status(self, args):
        async def run() -> PollerState:
            monitor = self._reinstall_monitor(args.server)
            state = await monitor.activate()
            monitor.deactivate()
            return state

        state = self._run(run())
        if self.output_format == 'json':
            self._output_result(self._state_output(state))
        else:
            self._render_state(state, 'Reinstall')

    def reset(self, args):
        monitor = self._reinstall_monitor(args.server)
        monitor.reset()
        self._emit_result(True, f"Cleared tracked reinstall for server {args.server}")

    # Rescue mode

    def rescue(self, args):
        handlers = {
            'enable': self._rescue_enable,
            'disable': self._rescue_disable,
            'status': self._rescue_status,
        }
        handlers[args.rescue_action](args)

    def _rescue_toggle(self, args, action: str):
        async def run():
            monitor = self._rescue_monitor(args.server)
            try:
                if action == 'enable':
                    await monitor.enable()
                else:
                    await monitor.disable()
            except PanelError as e:
                return e, None
            if not args.watch:
                creds = monitor.release_credentials()
                monitor.deactivate()
                return monitor.state, creds
            return await self._follow(monitor, 'Rescue mode'), None

        state, creds = self._run(run())
        if isinstance(state, PanelError):
            self._emit_panel_error(f"{action} rescue mode", state)
            return
        if args.watch:
            self._finish(state, 'Rescue mode')
            return
        message = f"Rescue mode {action} requested for server {args.server}"
        if self.output_format == 'json':
            data = {'success': True, 'message': message}
            if creds is not None:
                data['credentials'] = creds.to_dict()
            self._output_result(data)
        else:
            console.print(f"[green]✓ {message}[/green]")
            self._reveal_credentials(creds)

    def _rescue_enable(self, args):
        self._maybe_confirm(args, f"Boot server {args.server} into rescue mode?")
        self._rescue_toggle(args, 'enable')

    def _rescue_disable(self, args):
        self._maybe_confirm(args, f"Leave rescue mode on server {args.server}?")
        self._rescue_toggle(args, 'disable')

    def _rescue_status(self, args):
        async def run():
            monitor = self._rescue_monitor(args.server)
            state = await monitor.activate()
            monitor.deactivate()
            try:
                remote = await monitor.refresh()
            except PanelError as e:
                err_console.print(f"[yellow]Warning: Could not fetch rescue status: {e}[/yellow]")
                remote = None
            return state, remote

        state, remote = self._run(run())
        if self.output_format == 'json':
            data = self._state_output(state)
            if remote is not None:
                data['remote'] = {
                    'isSupported': remote.is_supported,
                    'isActive': remote.is_active,
                    'isEnabling': remote.is_enabling,
                    'isDisabling': remote.is_disabling,
                    'error': remote.error,
                }
            self._output_result(data)
            return

        if remote is not None:
            if not remote.is_supported:
                console.print("[yellow]Rescue mode is not supported for this server[/yellow]")
            elif remote.is_enabling:
                console.print("Rescue mode: [yellow]enabling[/yellow]")
            elif remote.is_disabling:
                console.print("Rescue mode: [yellow]disabling[/yellow]")
            else:
                label = '[green]active[/green]' if remote.is_active else '[dim]inactive[/dim]'
                console.print(f"Rescue mode: {label}")
        if state.is_active:
            self._render_state(state, 'Rescue mode')
