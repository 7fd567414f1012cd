import datetime
import json
import os


def print_w_time(string):
    gmt_offset = datetime.timezone(datetime.timedelta(hours=0))
    current_time =\
        datetime.datetime.now(gmt_offset).strftime('%Y-%m-%d %H:%M:%S')
    print(f"[{current_time} GMT] {string}", flush=True)


def get_constants_path():
    env_path = os.environ.get('LIQUIDATOR_CONSTANTS')
    if env_path:
        return os.path.join(env_path, '')
    module_path = os.path.realpath(__file__)
    repo = os.path.abspath(
        os.path.join(module_path, os.pardir, os.pardir, os.pardir))
    return repo + '/scripts/constants/'


def read_json(filename):
    constants_path = get_constants_path()
    with open(constants_path + filename) as f:
        return json.load(f)


def get_constants(network):
    const = read_json('constants.json')
    if network not in const:
        raise KeyError(f'No constants configured for network {network!r}')
    return const[network]


def get_abis():
    return read_json('abis.json')


def ceil_half(amount):
    '''
    Halve an integer amount, rounding up.
    '''
    return -(-int(amount) // 2)
