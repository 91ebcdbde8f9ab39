"""WebSocket CLI client for testing the pairing server.

Provides a command-line interface for connecting to the server, finding a
partner, chatting, and inspecting chat history. Voice is not captured; voice
chunks from the partner are counted and reported.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from voicepair.transport.protocol import (
    ChatMessage,
    ChatMessagePayload,
    DisconnectCallMessage,
    FindPartnerMessage,
    FindPartnerPayload,
    GetChatHistoryMessage,
    SetAutoFindMessage,
    SetAutoFindPayload,
    TypingStatusMessage,
    TypingStatusPayload,
    WireModel,
)

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /find         - Find a partner in your region
  /global       - Find a partner in any region
  /next         - Leave the current partner and find a new one
  /leave        - Leave the current partner
  /auto on|off  - Re-enter matchmaking automatically when a partner leaves
  /history      - Show chat history
  /quit         - Exit client
  /help         - Show this help
"""


class CLIClient:
    """WebSocket CLI client for pairing server communication."""

    def __init__(self, server_url: str, allow_global: bool = False, verbose: bool = False) -> None:
        """Initialize CLI client.

        Args:
            server_url: WebSocket server URL (e.g., ws://localhost:8080)
            allow_global: Default for /find matching outside the own region
            verbose: Enable verbose logging
        """
        self.server_url = server_url
        self.allow_global = allow_global
        self.verbose = verbose
        self.session_id: str | None = None
        self.region: str | None = None
        self.partner_id: str | None = None
        self.voice_chunks = 0
        self.running = True

        level = logging.DEBUG if verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    async def send(self, websocket: ClientConnection, message: WireModel) -> None:
        """Send a client message to the server.

        Args:
            websocket: WebSocket connection
            message: Client message model
        """
        await websocket.send(message.model_dump_json(by_alias=True))
        logger.debug(f"Sent: {message.type}")

    async def find_partner(self, websocket: ClientConnection, allow_global: bool) -> None:
        await self.send(
            websocket, FindPartnerMessage(payload=FindPartnerPayload(allow_global=allow_global))
        )

    def handle_message(self, message_data: str) -> None:
        """Handle incoming message from server.

        Args:
            message_data: Raw JSON message from server
        """
        try:
            data = json.loads(message_data)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid message from server: {e}")
            return

        msg_type = data.get("type")
        payload: dict[str, Any] = data.get("payload") or {}

        if msg_type == "session_id":
            self.session_id = payload.get("sessionId")
            self.region = payload.get("region")
            print(f"\nSession {self.session_id} (region: {self.region})")

        elif msg_type == "online_count":
            print(f"\n[{payload.get('count', 0)} online]")

        elif msg_type == "waiting":
            print(f"\n... {payload.get('message', 'Waiting for partner...')}")

        elif msg_type == "connected":
            self.partner_id = payload.get("partnerId")
            self.voice_chunks = 0
            print(f"\nConnected to {self.partner_id} ({payload.get('partnerRegion')})")

        elif msg_type == "partner_disconnected":
            print(f"\nPartner {self.partner_id} left")
            self.partner_id = None

        elif msg_type == "chat_message":
            print(f"\nPartner: {payload.get('text', '')}")

        elif msg_type == "typing_status":
            if payload.get("isTyping") and self.verbose:
                print("\n(partner is typing)")

        elif msg_type == "voice_activity":
            if self.verbose:
                state = "speaking" if payload.get("isSpeaking") else "silent"
                print(f"\n(partner {state})")

        elif msg_type == "voice_data":
            self.voice_chunks += 1
            if self.verbose:
                logger.debug(f"Voice chunk {self.voice_chunks} from {payload.get('from')}")

        elif msg_type == "chat_history":
            self.print_history(payload.get("history", []))

        elif msg_type == "error":
            print(f"\nError: {payload.get('message')}")

        else:
            logger.warning(f"Unknown message type: {msg_type}")

    def print_history(self, history: list[dict[str, Any]]) -> None:
        if not history:
            print("\nNo chat history")
            return

        for entry in history:
            print(f"\n--- {entry.get('partnerId')} ---")
            for record in entry.get("messages", []):
                speaker = "You" if record.get("from") == "me" else "Partner"
                print(f"  {speaker}: {record.get('text')}")

    async def receive_messages(self, websocket: ClientConnection) -> None:
        """Receive and handle messages from server.

        Args:
            websocket: WebSocket connection
        """
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                self.handle_message(message)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed by server")
        finally:
            self.running = False

    async def handle_command(self, websocket: ClientConnection, command: str) -> None:
        """Handle a slash command.

        Args:
            websocket: WebSocket connection
            command: Command text without the leading slash
        """
        name, _, argument = command.partition(" ")
        name = name.lower()

        if name == "quit":
            self.running = False
            print("\nGoodbye!")
        elif name == "help":
            print(HELP_TEXT)
        elif name == "find":
            await self.find_partner(websocket, self.allow_global)
        elif name == "global":
            await self.find_partner(websocket, True)
        elif name == "next":
            await self.send(websocket, DisconnectCallMessage())
            self.partner_id = None
            await self.find_partner(websocket, self.allow_global)
        elif name == "leave":
            await self.send(websocket, DisconnectCallMessage())
            self.partner_id = None
        elif name == "auto":
            enabled = argument.strip().lower() in ("on", "true", "1", "yes")
            await self.send(
                websocket, SetAutoFindMessage(payload=SetAutoFindPayload(auto_find=enabled))
            )
            print(f"Auto-find {'enabled' if enabled else 'disabled'}")
        elif name == "history":
            await self.send(websocket, GetChatHistoryMessage())
        else:
            print(f"Unknown command: {name}")
            print("Type /help for available commands")

    async def input_loop(self, websocket: ClientConnection) -> None:
        """Handle user input from stdin.

        Args:
            websocket: WebSocket connection
        """
        print("\n" + "=" * 60)
        print("voicepair CLI Client")
        print("=" * 60)
        print(HELP_TEXT)

        loop = asyncio.get_running_loop()

        while self.running:
            try:
                text = await loop.run_in_executor(None, input, "You: ")
                text = text.strip()

                if not text:
                    continue

                if text.startswith("/"):
                    await self.handle_command(websocket, text[1:])
                    continue

                if self.partner_id is None:
                    print("Not connected to a partner, type /find first")
                    continue

                await self.send(
                    websocket, TypingStatusMessage(payload=TypingStatusPayload(is_typing=False))
                )
                await self.send(websocket, ChatMessage(payload=ChatMessagePayload(text=text)))

            except EOFError:
                self.running = False
                break
            except websockets.exceptions.ConnectionClosed:
                self.running = False
                break

        await websocket.close()

    async def run(self) -> None:
        """Run the CLI client."""
        try:
            async with websockets.connect(self.server_url) as websocket:
                logger.info(f"Connected to {self.server_url}")

                def signal_handler() -> None:
                    self.running = False
                    asyncio.ensure_future(websocket.close())

                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, signal_handler)

                try:
                    await asyncio.gather(
                        self.input_loop(websocket),
                        self.receive_messages(websocket),
                    )
                finally:
                    for sig in (signal.SIGINT, signal.SIGTERM):
                        loop.remove_signal_handler(sig)

        except OSError as e:
            logger.error(f"Client error: {e}")
            sys.exit(1)


def main() -> None:
    """Main entry point for CLI client."""
    parser = argparse.ArgumentParser(description="WebSocket CLI client for the pairing server")
    parser.add_argument(
        "--host",
        type=str,
        default="ws://localhost:8080",
        help="WebSocket server URL (default: ws://localhost:8080)",
    )
    parser.add_argument(
        "--global",
        dest="allow_global",
        action="store_true",
        help="Match with partners from any region by default",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    try:
        asyncio.run(CLIClient(args.host, args.allow_global, args.verbose).run())
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
