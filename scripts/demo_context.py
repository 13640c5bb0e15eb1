"""Drive the Context Hub gateway over stdio: register a CRM connection, talk to it, pull context.

Salesforce credentials come from CTXHUB_DEMO_SF_CLIENT_ID, CTXHUB_DEMO_SF_CLIENT_SECRET,
CTXHUB_DEMO_SF_USERNAME and CTXHUB_DEMO_SF_PASSWORD. Without them the demo still runs and
shows how authentication failures come back as error envelopes / error sections.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client

OWNER_ID = os.getenv("CTXHUB_DEMO_OWNER", "demo-owner")


def _pretty(x) -> str:
    if isinstance(x, str):
        try:
            return json.dumps(json.loads(x), indent=2, ensure_ascii=False)
        except json.JSONDecodeError:
            return x
    return json.dumps(x, indent=2, ensure_ascii=False)


async def _call(session: ClientSession, name: str, args: dict):
    res = await session.call_tool(name, args)
    if getattr(res, "content", None):
        c0 = res.content[0]
        text = getattr(c0, "text", c0)
        try:
            return json.loads(text)
        except (TypeError, json.JSONDecodeError):
            return text
    return res


def _credentials() -> dict:
    return {
        "clientId": os.getenv("CTXHUB_DEMO_SF_CLIENT_ID", ""),
        "clientSecret": os.getenv("CTXHUB_DEMO_SF_CLIENT_SECRET", ""),
        "username": os.getenv("CTXHUB_DEMO_SF_USERNAME", ""),
        "password": os.getenv("CTXHUB_DEMO_SF_PASSWORD", ""),
    }


async def main() -> None:
    server = StdioServerParameters(
        command=sys.executable,
        args=["-m", "ctxhub_mcp.gateway"],
        env=dict(os.environ, MCP_TRANSPORT="stdio"),
    )

    async with stdio_client(server) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()

            tools = await session.list_tools()
            print("\nTOOLS:")
            for t in tools.tools:
                print(f"- {t.name}")

            print("\nCALL ctxhub.connections.register.v1(service_type='crm')")
            reg = await _call(
                session,
                "ctxhub.connections.register.v1",
                {"owner_id": OWNER_ID, "service_type": "crm", "credentials": _credentials()},
            )
            print(_pretty(reg))
            connection_id = reg["connection_id"]

            for envelope in (
                {"type": "discover", "id": "demo-1"},
                {"type": "list_tools", "id": "demo-2"},
                {"type": "read_resource", "id": "demo-3", "resource": "recent_items"},
            ):
                print(f"\nMESSAGE {envelope['type']}:")
                out = await _call(
                    session,
                    "ctxhub.message.v1",
                    {"connection_id": connection_id, "owner_id": OWNER_ID, "envelope": envelope},
                )
                print(_pretty(out))

            print("\nCALL ctxhub.context.build.v1(services=['crm'], max_tokens=500)")
            out = await _call(
                session,
                "ctxhub.context.build.v1",
                {"owner_id": OWNER_ID, "services": ["crm"], "max_tokens": 500, "include_metadata": True},
            )
            print(out.get("context", "") if isinstance(out, dict) else out)
            if isinstance(out, dict):
                print(_pretty(out.get("metadata", {})))

    print("\nDemo complete.")


if __name__ == "__main__":
    asyncio.run(main())
