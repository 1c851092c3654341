# roomchatd wire protocol strings and outcome codes.
#
# Clients match on some of these substrings (name prompt, welcome marker),
# so they must stay stable within one deployment.

COMMAND_PREFIX = "/"
SERVER_TAG = "[SERVER]"

# Chat line relayed to room members.
CHAT_TEMPLATE = "[{room}] {sender}: {message}"

# Name negotiation
NAME_PROMPT = "Enter your username:"
NAME_EMPTY = "Username cannot be empty. " + NAME_PROMPT
NAME_TAKEN = "Username already taken. " + NAME_PROMPT
NAME_INVALID = "Username is invalid. " + NAME_PROMPT

# Room selection / welcome
ROOM_CATALOG_HEADER = "Available rooms:"
ROOM_CHOOSE = "Choose a room to join:"
ROOM_SELECT_INVALID = "Invalid room name, please try again."
WELCOME_MARKER = "Welcome to the chat"
WELCOME = WELCOME_MARKER + ", {name}! You are in room '{room}'."
WELCOME_LOBBY = WELCOME_MARKER + ", {name}! You are not in a room yet."
HELP_HINT = "Type /help for available commands, /rooms to list rooms, /join <room> to move."

# Room notices
NOTICE_JOINED = "{name} joined the room"
NOTICE_LEFT = "{name} left the room"
NOTICE_CONNECTED = "{name} has connected"
NOTICE_DISCONNECTED = "{name} has disconnected"

# Command replies
NOT_IN_ROOM = "You are not in a room. Use /join <room> to start chatting."
UNKNOWN_COMMAND = "Unknown command: {cmd}. Type /help for available commands."
INVALID_ROOM = "Invalid room name. Type /rooms to see the list."
COMMAND_FAILED = "Command failed, please try again."

HELP_TEXT = """Available commands:
  /join <room>  - Join a specific room
  /leave        - Leave current room
  /rooms        - List rooms and member counts
  /users        - List users in current room
  /help         - Show this help message
  /quit         - Disconnect from the server"""

# Commands handled locally by the terminal client; never sent over the wire.
LOCAL_QUIT_COMMANDS = ("/quit", "/exit")

# Registry outcome codes
REJECT_EMPTY = "empty"
REJECT_TAKEN = "taken"
REJECT_INVALID = "invalid"

ERR_INVALID_ROOM = "invalid_room"
ERR_NOT_IN_ROOM = "not_in_room"
ERR_ALREADY_IN_ROOM = "already_in_room"
ERR_NOT_REGISTERED = "not_registered"

# Config choices
CATALOG_FIXED = "fixed"
CATALOG_DYNAMIC = "dynamic"
LEAVE_TO_LOBBY = "lobby"
LEAVE_TO_DEFAULT = "default"

DEFAULT_ROOMS = ("general", "games", "hobby", "study", "chill", "qna")
