"""Command line entry point for mcp-hub."""

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

from mcp.shared.exceptions import McpError

from .config import get_config
from .errors import McpHubError
from .mcp import McpHub, McpNotification, McpServer, McpSettings
from .runtime import init_runtime


def _print_servers(servers):
    """Print one status line per server."""
    if not servers:
        print("MCPサーバーは設定されていません。")
        return
    for server in servers:
        state = "disabled" if server.disabled else server.status
        print(
            f"  - {server.name} [{state}] "
            f"tools={len(server.tools)} resources={len(server.resources)} "
            f"templates={len(server.resource_templates)}"
        )
        if server.error:
            for line in server.error.splitlines():
                print(f"      ! {line}")


def _print_json(data):
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _show_message(level, message):
    stream = sys.stderr if level == "error" else sys.stdout
    print(f"[{level}] {message}", file=stream, flush=True)


def _build_parser():
    parser = argparse.ArgumentParser(prog="mcp-hub", description="MCP connection hub")
    parser.add_argument("--settings-dir", help="Directory containing mcp_settings.json")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("servers", help="Connect all servers and print their status")

    tools = sub.add_parser("tools", help="List the tools of one server")
    tools.add_argument("server")

    call = sub.add_parser("call", help="Call a tool")
    call.add_argument("server")
    call.add_argument("tool")
    call.add_argument("--args", default="{}", help="Tool arguments as a JSON object")

    read = sub.add_parser("read", help="Read a resource")
    read.add_argument("server")
    read.add_argument("uri")

    sub.add_parser("watch", help="Keep running and print changes until interrupted")
    return parser


def _on_snapshot(servers: list[McpServer]):
    print("--- MCPサーバーの状態が更新されました ---", flush=True)
    _print_servers(servers)


async def _watch(hub):
    def on_notification(server_name, level, message):
        print(f"[{server_name}] {level}: {message}", flush=True)

    hub.set_notification_consumer(on_notification)
    for notification in hub.drain_pending_notifications():
        on_notification(notification.server_name, notification.level, notification.message)

    print("監視中です。終了するには Ctrl+C を押してください。", flush=True)
    await asyncio.Event().wait()


async def run(args, config) -> int:
    """Run one CLI command against a freshly initialized hub."""
    pending: list[McpNotification] = []
    watching = args.command == "watch"
    hub = McpHub(
        McpSettings(config.settings_path),
        publish_server_snapshot=_on_snapshot if watching else None,
        ui_forward=None if watching else pending.append,
        show_message=_show_message,
        config=config,
    )
    try:
        await hub.initialize()

        if args.command == "servers":
            _print_servers(hub.get_sorted_connections())
        elif args.command == "tools":
            matches = [s for s in hub.get_connections(include_disabled=True) if s.name == args.server]
            if not matches:
                print(f"エラー: サーバー `{args.server}` が見つかりません。", file=sys.stderr)
                return 1
            for tool in matches[0].tools:
                approve = " (auto-approve)" if tool.get("autoApprove") else ""
                print(f"  - {tool['name']}{approve}: {tool.get('description') or ''}")
        elif args.command == "call":
            try:
                arguments = json.loads(args.args)
            except json.JSONDecodeError as e:
                print(f"エラー: --args が不正なJSONです: {e}", file=sys.stderr)
                return 1
            if not isinstance(arguments, dict):
                print("エラー: --args はJSONオブジェクトで指定してください。", file=sys.stderr)
                return 1
            result = await hub.call_tool(args.server, args.tool, arguments)
            _print_json(result)
            if result.get("isError"):
                return 1
        elif args.command == "read":
            _print_json(await hub.read_resource(args.server, args.uri))
        elif args.command == "watch":
            await _watch(hub)

        for notification in pending:
            print(
                f"[{notification.server_name}] {notification.level}: {notification.message}",
                file=sys.stderr,
            )
        return 0
    except (McpHubError, McpError, TimeoutError, ValueError) as e:
        print(f"エラー: {e}", file=sys.stderr)
        return 1
    finally:
        await hub.dispose()


def main(argv=None) -> int:
    """CLI entry point."""
    args = _build_parser().parse_args(argv)
    try:
        init_runtime(args.log_level)
    except ValueError as e:
        print(f"エラー: {e}", file=sys.stderr)
        return 1

    config = get_config()
    if args.settings_dir:
        config = replace(config, settings_dir=Path(args.settings_dir).expanduser())

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        print("\n終了します。")
        return 0


if __name__ == "__main__":
    sys.exit(main())
