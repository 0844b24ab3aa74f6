# Shared Configuration
import math

BOARD_WIDTH = 1200
BOARD_HEIGHT = 700
BOARD_TOP = 60
BOARD_BOTTOM = 640
GOAL_LEFT_X = 130
GOAL_RIGHT_X = 1070

GUN_INSET = 60
MUZZLE_OFFSET = 26
AIM_ARC = 1.2
HUMAN_AIM_TRACK_SPEED = 3.8  # rad/s towards desired_angle
HUMAN_TURN_SPEED = 3.6  # rad/s per unit of aim_dir

# Pieces
PIECE_BASE_RADIUS = 24
PIECE_SHAPES = ("circle", "triangle", "square", "hex", "star6", "star8")
PIECE_COUNT_OPTIONS = (3, 5, 7)
DEFAULT_PIECE_COUNT = 5
PIECE_LANE_MARGIN = 70

# Ammo
AMMO_SPEED = 760
AMMO_RADIUS = 4
AMMO_TTL = 10.0
MAG_CAPACITY = 20
TOTAL_AMMO = 50
START_MAG = 20
START_BIN_EACH = (TOTAL_AMMO - START_MAG * 2) // 2
RELOAD_SECONDS = 0.7
SHOT_INTERVAL = 0.12

# Physics
MAX_TICK_DT = 0.05
PIECE_DAMPING = 0.987
PIECE_SPIN_DAMPING = 0.982
SHOT_DAMPING = 0.999
PIECE_WALL_RESTITUTION = 0.5
SHOT_WALL_RESTITUTION = 0.85
PIECE_RESTITUTION = 0.35
PIECE_FRICTION = 0.2
SHOT_BOUNCE = 0.35
SHOT_CARRY = 0.05
SHOT_MASS = 1.0
SHOT_PUSHBACK = 2.0
SHOT_TRANSFER_FLOOR = 0.15
SHOT_TRANSFER_GAIN = 0.95
SHOT_SPIN_GAIN = 0.05

# Room lifecycle
COUNTDOWN_SECONDS = 5.0
INPUT_STALE_SECONDS = 1.0
PRESENCE_ACTIVE_SECONDS = 30.0
ROOM_TIMEOUT_SECONDS = 60 * 30
CHAT_MAX_MESSAGES = 120
CHAT_MAX_CHARS = 240
OPEN_ROOMS_LIMIT = 25

MODE_SINGLE = "single"
MODE_NETWORK = "network"
MODES = (MODE_SINGLE, MODE_NETWORK)

STATE_LOBBY = "lobby"
STATE_COUNTDOWN = "countdown"
STATE_RUNNING = "running"
STATE_FINISHED = "finished"

DIFFICULTIES = ("easy", "medium", "hard")
DEFAULT_DIFFICULTY = "medium"

# Scheduler
SIM_TICK_HZ = 60
TICK_DT_MS = 1000 / SIM_TICK_HZ

# Server
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765

# Protocol Opcodes / Types
MSG_CREATE = "create"
MSG_JOIN = "join"
MSG_INPUT = "input"
MSG_READY = "ready"
MSG_START = "start"
MSG_REMATCH = "rematch"
MSG_RESIGN = "resign"
MSG_LEAVE = "leave"
MSG_CHAT = "chat"
MSG_STATE = "state"
MSG_ROOMS = "rooms"
MSG_ERROR = "err"
REPLY_SUFFIX = "_ok"


def aim_bounds(side):
    forward = 0.0 if side == 0 else math.pi
    return forward - AIM_ARC, forward + AIM_ARC


def gun_position(side):
    x = GUN_INSET if side == 0 else BOARD_WIDTH - GUN_INSET
    return x, BOARD_HEIGHT / 2
