"""
MAVLink Wire Protocol Primitives

Frame Format (v1):
┌──────┬─────┬─────┬───────┬────────┬───────┬─────────┬───────┐
│ 0xFE │ Len │ Seq │ SysID │ CompID │ MsgID │ Payload │ CRC16 │
│ 1B   │ 1B  │ 1B  │ 1B    │ 1B     │ 1B    │ Len B   │ 2B    │
└──────┴─────┴─────┴───────┴────────┴───────┴─────────┴───────┘

Frame Format (v2):
┌──────┬─────┬────────┬────────┬─────┬───────┬────────┬───────┬─────────┬───────┬───────────┐
│ 0xFD │ Len │ Incomp │ Compat │ Seq │ SysID │ CompID │ MsgID │ Payload │ CRC16 │ Signature │
│ 1B   │ 1B  │ 1B     │ 1B     │ 1B  │ 1B    │ 1B     │ 3B LE │ Len B   │ 2B    │ 13B (opt) │
└──────┴─────┴────────┴────────┴─────┴───────┴────────┴───────┴─────────┴───────┴───────────┘

- CRC16: X.25 (CRC-16/MCRF4XX) seeded with 0xFFFF, accumulated over every
  header byte after the magic, the payload and finally the per-message
  CRC-extra byte.
- The signature block is present only when the v2 incompatibility flag
  bit 0x01 is set.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional
import struct


class FrameError(Exception):
    """Reason a candidate frame was discarded by the parser."""
    pass


class EncodeError(Exception):
    """Raised when a frame or command cannot be serialised."""
    pass


class MessageId(IntEnum):
    """Message identifiers used by the link layer."""

    HEARTBEAT = 0
    SYS_STATUS = 1
    SYSTEM_TIME = 2
    PING = 4
    SET_MODE = 11
    PARAM_VALUE = 22
    GPS_RAW_INT = 24
    GPS_STATUS = 25
    SCALED_IMU = 26
    RAW_IMU = 27
    SCALED_PRESSURE = 29
    ATTITUDE = 30
    ATTITUDE_QUATERNION = 31
    LOCAL_POSITION_NED = 32
    GLOBAL_POSITION_INT = 33
    RC_CHANNELS_RAW = 35
    SERVO_OUTPUT_RAW = 36
    MISSION_CURRENT = 42
    NAV_CONTROLLER_OUTPUT = 62
    RC_CHANNELS = 65
    REQUEST_DATA_STREAM = 66
    VFR_HUD = 74
    COMMAND_LONG = 76
    COMMAND_ACK = 77
    TIMESYNC = 111
    POWER_STATUS = 125
    ALTITUDE = 141
    BATTERY_STATUS = 147
    HOME_POSITION = 242
    EXTENDED_SYS_STATE = 245
    STATUSTEXT = 253


# Published CRC-extra seeds for the common and ardupilotmega dialects. Must
# match peers exactly. Frames whose id is missing here cannot be CRC-checked
# and are dropped by the parser, so ids a vehicle may send belong here even
# when the decoder has no payload layout for them.
CRC_EXTRA: dict[int, int] = {
    MessageId.HEARTBEAT: 50,
    MessageId.SYS_STATUS: 124,
    MessageId.SYSTEM_TIME: 137,
    MessageId.PING: 237,
    5: 217,    # CHANGE_OPERATOR_CONTROL
    6: 104,    # CHANGE_OPERATOR_CONTROL_ACK
    7: 119,    # AUTH_KEY
    8: 117,    # LINK_NODE_STATUS
    MessageId.SET_MODE: 89,
    20: 214,   # PARAM_REQUEST_READ
    21: 159,   # PARAM_REQUEST_LIST
    MessageId.PARAM_VALUE: 220,
    23: 168,   # PARAM_SET
    MessageId.GPS_RAW_INT: 24,
    MessageId.GPS_STATUS: 23,
    MessageId.SCALED_IMU: 170,
    MessageId.RAW_IMU: 144,
    28: 67,    # RAW_PRESSURE
    MessageId.SCALED_PRESSURE: 115,
    MessageId.ATTITUDE: 39,
    MessageId.ATTITUDE_QUATERNION: 246,
    MessageId.LOCAL_POSITION_NED: 185,
    MessageId.GLOBAL_POSITION_INT: 104,
    34: 237,   # RC_CHANNELS_SCALED
    MessageId.RC_CHANNELS_RAW: 244,
    MessageId.SERVO_OUTPUT_RAW: 222,
    37: 212,   # MISSION_REQUEST_PARTIAL_LIST
    38: 9,     # MISSION_WRITE_PARTIAL_LIST
    39: 254,   # MISSION_ITEM
    40: 230,   # MISSION_REQUEST
    41: 28,    # MISSION_SET_CURRENT
    MessageId.MISSION_CURRENT: 28,
    43: 132,   # MISSION_REQUEST_LIST
    44: 221,   # MISSION_COUNT
    45: 232,   # MISSION_CLEAR_ALL
    46: 11,    # MISSION_ITEM_REACHED
    47: 153,   # MISSION_ACK
    48: 41,    # SET_GPS_GLOBAL_ORIGIN
    49: 39,    # GPS_GLOBAL_ORIGIN
    50: 78,    # PARAM_MAP_RC
    51: 196,   # MISSION_REQUEST_INT
    54: 15,    # SAFETY_SET_ALLOWED_AREA
    55: 3,     # SAFETY_ALLOWED_AREA
    61: 167,   # ATTITUDE_QUATERNION_COV
    MessageId.NAV_CONTROLLER_OUTPUT: 183,
    63: 119,   # GLOBAL_POSITION_INT_COV
    64: 191,   # LOCAL_POSITION_NED_COV
    MessageId.RC_CHANNELS: 118,
    MessageId.REQUEST_DATA_STREAM: 148,
    67: 21,    # DATA_STREAM
    69: 243,   # MANUAL_CONTROL
    70: 124,   # RC_CHANNELS_OVERRIDE
    73: 38,    # MISSION_ITEM_INT
    MessageId.VFR_HUD: 20,
    75: 158,   # COMMAND_INT
    MessageId.COMMAND_LONG: 152,
    MessageId.COMMAND_ACK: 143,
    80: 14,    # COMMAND_CANCEL
    81: 106,   # MANUAL_SETPOINT
    82: 49,    # SET_ATTITUDE_TARGET
    83: 22,    # ATTITUDE_TARGET
    84: 143,   # SET_POSITION_TARGET_LOCAL_NED
    85: 140,   # POSITION_TARGET_LOCAL_NED
    86: 5,     # SET_POSITION_TARGET_GLOBAL_INT
    87: 150,   # POSITION_TARGET_GLOBAL_INT
    89: 231,   # LOCAL_POSITION_NED_SYSTEM_GLOBAL_OFFSET
    90: 183,   # HIL_STATE
    91: 63,    # HIL_CONTROLS
    92: 54,    # HIL_RC_INPUTS_RAW
    93: 47,    # HIL_ACTUATOR_CONTROLS
    100: 175,  # OPTICAL_FLOW
    101: 102,  # GLOBAL_VISION_POSITION_ESTIMATE
    102: 158,  # VISION_POSITION_ESTIMATE
    103: 208,  # VISION_SPEED_ESTIMATE
    104: 56,   # VICON_POSITION_ESTIMATE
    105: 93,   # HIGHRES_IMU
    106: 138,  # OPTICAL_FLOW_RAD
    107: 108,  # HIL_SENSOR
    108: 32,   # SIM_STATE
    109: 185,  # RADIO_STATUS
    110: 84,   # FILE_TRANSFER_PROTOCOL
    MessageId.TIMESYNC: 34,
    112: 174,  # CAMERA_TRIGGER
    113: 124,  # HIL_GPS
    114: 237,  # HIL_OPTICAL_FLOW
    115: 4,    # HIL_STATE_QUATERNION
    116: 76,   # SCALED_IMU2
    117: 128,  # LOG_REQUEST_LIST
    118: 56,   # LOG_ENTRY
    119: 116,  # LOG_REQUEST_DATA
    120: 134,  # LOG_DATA
    121: 237,  # LOG_ERASE
    122: 203,  # LOG_REQUEST_END
    123: 250,  # GPS_INJECT_DATA
    124: 87,   # GPS2_RAW
    MessageId.POWER_STATUS: 203,
    126: 220,  # SERIAL_CONTROL
    127: 25,   # GPS_RTK
    128: 226,  # GPS2_RTK
    129: 46,   # SCALED_IMU3
    130: 29,   # DATA_TRANSMISSION_HANDSHAKE
    131: 223,  # ENCAPSULATED_DATA
    132: 85,   # DISTANCE_SENSOR
    133: 6,    # TERRAIN_REQUEST
    134: 229,  # TERRAIN_DATA
    135: 203,  # TERRAIN_CHECK
    136: 1,    # TERRAIN_REPORT
    137: 195,  # SCALED_PRESSURE2
    138: 109,  # ATT_POS_MOCAP
    139: 168,  # SET_ACTUATOR_CONTROL_TARGET
    140: 181,  # ACTUATOR_CONTROL_TARGET
    MessageId.ALTITUDE: 47,
    142: 72,   # RESOURCE_REQUEST
    143: 131,  # SCALED_PRESSURE3
    144: 127,  # FOLLOW_TARGET
    146: 103,  # CONTROL_SYSTEM_STATE
    MessageId.BATTERY_STATUS: 154,
    148: 178,  # AUTOPILOT_VERSION
    149: 200,  # LANDING_TARGET
    150: 134,  # SENSOR_OFFSETS
    151: 219,  # SET_MAG_OFFSETS
    152: 208,  # MEMINFO
    153: 188,  # AP_ADC
    154: 84,   # DIGICAM_CONFIGURE
    155: 22,   # DIGICAM_CONTROL
    156: 19,   # MOUNT_CONFIGURE
    157: 21,   # MOUNT_CONTROL
    158: 134,  # MOUNT_STATUS
    160: 78,   # FENCE_POINT
    161: 68,   # FENCE_FETCH_POINT
    162: 189,  # FENCE_STATUS
    163: 127,  # AHRS
    164: 154,  # SIMSTATE
    165: 21,   # HWSTATUS
    166: 21,   # RADIO
    167: 144,  # LIMITS_STATUS
    168: 1,    # WIND
    169: 234,  # DATA16
    170: 73,   # DATA32
    171: 181,  # DATA64
    172: 22,   # DATA96
    173: 83,   # RANGEFINDER
    174: 167,  # AIRSPEED_AUTOCAL
    175: 138,  # RALLY_POINT
    176: 234,  # RALLY_FETCH_POINT
    177: 240,  # COMPASSMOT_STATUS
    178: 47,   # AHRS2
    179: 189,  # CAMERA_STATUS
    180: 52,   # CAMERA_FEEDBACK
    181: 174,  # BATTERY2
    182: 229,  # AHRS3
    183: 85,   # AUTOPILOT_VERSION_REQUEST
    184: 159,  # REMOTE_LOG_DATA_BLOCK
    185: 186,  # REMOTE_LOG_BLOCK_STATUS
    186: 72,   # LED_CONTROL
    191: 92,   # MAG_CAL_PROGRESS
    192: 36,   # MAG_CAL_REPORT
    193: 71,   # EKF_STATUS_REPORT
    194: 98,   # PID_TUNING
    195: 120,  # DEEPSTALL
    200: 134,  # GIMBAL_REPORT
    201: 205,  # GIMBAL_CONTROL
    214: 69,   # GIMBAL_TORQUE_CMD_REPORT
    215: 101,  # GOPRO_HEARTBEAT
    216: 50,   # GOPRO_GET_REQUEST
    217: 202,  # GOPRO_GET_RESPONSE
    218: 17,   # GOPRO_SET_REQUEST
    219: 162,  # GOPRO_SET_RESPONSE
    225: 208,  # EFI_STATUS
    226: 207,  # RPM
    230: 163,  # ESTIMATOR_STATUS
    231: 105,  # WIND_COV
    232: 151,  # GPS_INPUT
    233: 35,   # GPS_RTCM_DATA
    234: 150,  # HIGH_LATENCY
    235: 179,  # HIGH_LATENCY2
    241: 90,   # VIBRATION
    MessageId.HOME_POSITION: 104,
    243: 85,   # SET_HOME_POSITION
    244: 95,   # MESSAGE_INTERVAL
    MessageId.EXTENDED_SYS_STATE: 130,
    246: 184,  # ADSB_VEHICLE
    247: 81,   # COLLISION
    248: 8,    # V2_EXTENSION
    249: 204,  # MEMORY_VECT
    250: 49,   # DEBUG_VECT
    251: 170,  # NAMED_VALUE_FLOAT
    252: 44,   # NAMED_VALUE_INT
    MessageId.STATUSTEXT: 83,
    254: 46,   # DEBUG
    256: 71,   # SETUP_SIGNING
    257: 131,  # BUTTON_CHANGE
    258: 187,  # PLAY_TUNE
    259: 92,   # CAMERA_INFORMATION
    260: 146,  # CAMERA_SETTINGS
    261: 179,  # STORAGE_INFORMATION
    262: 12,   # CAMERA_CAPTURE_STATUS
    263: 133,  # CAMERA_IMAGE_CAPTURED
    264: 49,   # FLIGHT_INFORMATION
    265: 26,   # MOUNT_ORIENTATION
    266: 193,  # LOGGING_DATA
    267: 35,   # LOGGING_DATA_ACKED
    268: 14,   # LOGGING_ACK
    269: 109,  # VIDEO_STREAM_INFORMATION
    270: 59,   # VIDEO_STREAM_STATUS
    280: 70,   # GIMBAL_MANAGER_INFORMATION
    281: 48,   # GIMBAL_MANAGER_STATUS
    282: 123,  # GIMBAL_MANAGER_SET_ATTITUDE
    283: 74,   # GIMBAL_DEVICE_INFORMATION
    284: 99,   # GIMBAL_DEVICE_SET_ATTITUDE
    285: 137,  # GIMBAL_DEVICE_ATTITUDE_STATUS
    286: 210,  # AUTOPILOT_STATE_FOR_GIMBAL_DEVICE
    287: 1,    # GIMBAL_MANAGER_SET_PITCHYAW
    288: 20,   # GIMBAL_MANAGER_SET_MANUAL_CONTROL
    290: 251,  # ESC_INFO
    291: 10,   # ESC_STATUS
    299: 19,   # WIFI_CONFIG_AP
    301: 243,  # AIS_VESSEL
    310: 28,   # UAVCAN_NODE_STATUS
    311: 95,   # UAVCAN_NODE_INFO
    320: 243,  # PARAM_EXT_REQUEST_READ
    321: 88,   # PARAM_EXT_REQUEST_LIST
    322: 243,  # PARAM_EXT_VALUE
    323: 78,   # PARAM_EXT_SET
    324: 132,  # PARAM_EXT_ACK
    330: 23,   # OBSTACLE_DISTANCE
    331: 91,   # ODOMETRY
    339: 199,  # ISBD_LINK_STATUS
    340: 99,   # UTM_GLOBAL_POSITION
    350: 232,  # DEBUG_FLOAT_ARRAY
    360: 11,   # ORBIT_EXECUTION_STATUS
    370: 75,   # SMART_BATTERY_INFO
    373: 117,  # GENERATOR_STATUS
    375: 251,  # ACTUATOR_OUTPUT_STATUS
    380: 232,  # TIME_ESTIMATE_TO_TARGET
    385: 147,  # TUNNEL
    390: 156,  # ONBOARD_COMPUTER_STATUS
    395: 0,    # COMPONENT_INFORMATION
    397: 182,  # COMPONENT_METADATA
    9000: 113,   # WHEEL_DISTANCE
    9005: 117,   # WINCH_STATUS
    11010: 46,   # ADAP_TUNING
    11011: 106,  # VISION_POSITION_DELTA
    11020: 205,  # AOA_SSA
    11030: 144,  # ESC_TELEMETRY_1_TO_4
}


# Protocol constants
MAGIC_V1 = 0xFE
MAGIC_V2 = 0xFD
HEADER_SIZE_V1 = 6   # Magic(1) + Len(1) + Seq(1) + SysID(1) + CompID(1) + MsgID(1)
HEADER_SIZE_V2 = 10  # Magic(1) + Len(1) + Incompat(1) + Compat(1) + Seq(1) + SysID(1) + CompID(1) + MsgID(3)
CHECKSUM_SIZE = 2
SIGNATURE_SIZE = 13
MAX_PAYLOAD = 255
MAX_MESSAGE_ID_V1 = 0xFF
MAX_MESSAGE_ID_V2 = 0xFFFFFF

IFLAG_SIGNED = 0x01
SUPPORTED_INCOMPAT_FLAGS = IFLAG_SIGNED


@dataclass(frozen=True)
class Frame:
    """One checksummed protocol frame."""

    version: int
    sequence: int
    system_id: int
    component_id: int
    msg_id: int
    payload: bytes
    checksum: int = 0
    incompat_flags: int = 0
    compat_flags: int = 0
    signature: Optional[bytes] = None

    @property
    def length(self) -> int:
        """Return payload length."""
        return len(self.payload)

    @property
    def is_signed(self) -> bool:
        return bool(self.incompat_flags & IFLAG_SIGNED)

    @property
    def sender(self) -> tuple[int, int]:
        """(system_id, component_id) pair identifying the sender."""
        return self.system_id, self.component_id


def crc_accumulate(byte: int, crc: int) -> int:
    """Accumulate one byte into a running X.25 CRC."""
    tmp = byte ^ (crc & 0xFF)
    tmp = (tmp ^ (tmp << 4)) & 0xFF
    return ((crc >> 8) ^ (tmp << 8) ^ (tmp << 3) ^ (tmp >> 4)) & 0xFFFF


def x25_crc(data: bytes, initial: int = 0xFFFF) -> int:
    """
    Calculate the X.25 checksum used by the protocol.

    Args:
        data: Data bytes to calculate CRC over
        initial: Initial CRC value (default 0xFFFF)

    Returns:
        16-bit CRC value
    """
    crc = initial
    for byte in data:
        crc = crc_accumulate(byte, crc)
    return crc


def frame_checksum(header_without_magic: bytes, payload: bytes, crc_extra: int) -> int:
    """Checksum over header (minus magic), payload and the CRC-extra seed."""
    crc = x25_crc(header_without_magic)
    crc = x25_crc(payload, crc)
    return crc_accumulate(crc_extra, crc)


def header_size(magic: int) -> int:
    """Return the full header size (magic included) for a magic byte."""
    if magic == MAGIC_V1:
        return HEADER_SIZE_V1
    if magic == MAGIC_V2:
        return HEADER_SIZE_V2
    raise ValueError(f"Not a magic byte: 0x{magic:02X}")


def encode_frame(
    msg_id: int,
    payload: bytes,
    *,
    sequence: int = 0,
    system_id: int = 255,
    component_id: int = 190,
    version: int = 2,
    compat_flags: int = 0,
) -> bytes:
    """
    Encode a payload into wire bytes.

    v2 frames have trailing zero payload bytes trimmed (at least one byte is
    kept); receivers zero-extend them back.

    Args:
        msg_id: Message identifier
        payload: Packed message payload
        sequence: Sequence number (0-255)
        system_id: Sender system id
        component_id: Sender component id
        version: Protocol version (1 or 2)
        compat_flags: v2 compatibility flags

    Returns:
        Encoded frame bytes

    Raises:
        EncodeError: If the frame cannot be represented
    """
    if msg_id not in CRC_EXTRA:
        raise EncodeError(f"No CRC-extra known for message id {msg_id}")
    if len(payload) > MAX_PAYLOAD:
        raise EncodeError(f"Payload size {len(payload)} exceeds maximum {MAX_PAYLOAD}")
    for name, value in (("sequence", sequence), ("system_id", system_id),
                        ("component_id", component_id), ("compat_flags", compat_flags)):
        if not 0 <= value <= 0xFF:
            raise EncodeError(f"{name} must fit in uint8, got {value}")

    if version == 1:
        if msg_id > MAX_MESSAGE_ID_V1:
            raise EncodeError(f"Message id {msg_id} does not fit in a v1 frame")
        header = struct.pack("<BBBBBB", MAGIC_V1, len(payload), sequence,
                             system_id, component_id, msg_id)
    elif version == 2:
        payload = payload.rstrip(b"\x00") or payload[:1]
        header = struct.pack("<BBBBBBB", MAGIC_V2, len(payload), 0, compat_flags,
                             sequence, system_id, component_id)
        header += struct.pack("<I", msg_id)[:3]
    else:
        raise EncodeError(f"Unsupported protocol version {version}")

    crc = frame_checksum(header[1:], payload, CRC_EXTRA[msg_id])
    return header + payload + struct.pack("<H", crc)


def encode(frame: Frame) -> bytes:
    """Encode an existing Frame record (signature is not reproduced)."""
    return encode_frame(
        frame.msg_id,
        frame.payload,
        sequence=frame.sequence,
        system_id=frame.system_id,
        component_id=frame.component_id,
        version=frame.version,
        compat_flags=frame.compat_flags,
    )
