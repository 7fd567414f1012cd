from .errors import SchemaError
from .models import Position

WORD_SIZE = 32
NUM_POSITION_FIELDS = 3
RECORD_SIZE = WORD_SIZE * NUM_POSITION_FIELDS
ADDRESS_SIZE = 20


def to_bytes(raw):
    if raw is None:
        return b''
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    raw = str(raw)
    if raw.startswith('0x') or raw.startswith('0X'):
        raw = raw[2:]
    try:
        return bytes.fromhex(raw)
    except ValueError as e:
        raise SchemaError(f'Position list is not valid hex: {e}') from e


def split_records(data):
    if len(data) % RECORD_SIZE != 0:
        raise SchemaError(
            f'Data length {len(data)} invalid, must be whole number of '
            f'{RECORD_SIZE} byte records'
        )
    return [data[i:i + RECORD_SIZE] for i in range(0, len(data), RECORD_SIZE)]


def decode_record(record):
    words = [record[i:i + WORD_SIZE]
             for i in range(0, RECORD_SIZE, WORD_SIZE)]
    return Position(
        position_id='0x' + words[0].hex(),
        counterparty='0x' + words[1][-ADDRESS_SIZE:].hex(),
        expiry_timestamp=int.from_bytes(words[2], 'big'),
    )


def decode_positions(raw):
    '''
    Decode the packed position list returned by the ledger.

    Each record is three 32 byte words: position hash, counterparty
    address (right aligned) and expiry timestamp.
    '''
    data = to_bytes(raw)
    if not data:
        return []
    return [decode_record(rec) for rec in split_records(data)]


def encode_positions(positions):
    '''
    Inverse of `decode_positions`, used by fixtures and local tooling.
    '''
    out = b''
    for pos in positions:
        out += bytes.fromhex(pos.position_id[2:]).rjust(WORD_SIZE, b'\0')
        out += bytes.fromhex(pos.counterparty[2:]).rjust(WORD_SIZE, b'\0')
        out += int(pos.expiry_timestamp).to_bytes(WORD_SIZE, 'big')
    return out
