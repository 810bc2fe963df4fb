"""Address prediction for create, create2 and create3."""
from unittest.mock import MagicMock

import eth_abi
import pytest
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes

from eth_multichain.address import (
    CREATE_DEPLOY_BYTECODE_HASH,
    OfflineAddressPredictor,
    OnlineAddressPredictor,
    PredictionParams,
    get_create2_address,
    get_create_address,
    get_deploy_options,
    get_salt_from_key,
    mix_salt,
)
from eth_multichain.exceptions import ConfigError, NetworkError, UnsupportedMethodError, ValidationError


SENDER = "0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0"

FACTORY = "0x98b2920d53612483f91f12ed7754e51b4a77919e"

DEPLOYER = "0x5e9d8d09ee7b1ced4a5a0c2d31f8c8a2ecd5f2ab"


@pytest.mark.parametrize(
    "nonce,expected",
    [
        (0, "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"),
        (1, "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"),
        (2, "0xf778b86fa74e846c4f0a1fbd1335fe81c00a0c91"),
    ],
)
def test_create_address(nonce, expected):
    """Sender + nonce formula matches known mainnet values."""
    assert get_create_address(SENDER, nonce).lower() == expected


def test_create2_address_eip_1014():
    """First example vector of EIP-1014."""
    address = get_create2_address(
        "0x0000000000000000000000000000000000000000",
        b"\x00" * 32,
        keccak(HexBytes("0x00")),
    )
    assert address == to_checksum_address("0x4d1a2e2bb4f88f0250f26ffff098b0b30b26bf38")


def test_create2_address_eip_1014_with_salt():
    """Second example vector of EIP-1014."""
    address = get_create2_address(
        "0xdeadbeef00000000000000000000000000000000",
        b"\x00" * 32,
        keccak(HexBytes("0x00")),
    )
    assert address == to_checksum_address("0xb928f69bb1d91cd65274e3c79d8986362984fda3")


def test_salt_from_key():
    """Free-form keys are hashed, 32 bytes hex is used as is."""
    assert get_salt_from_key("Operators v1") == keccak(eth_abi.encode(["string"], ["Operators v1"]))

    raw = "0x" + "ab" * 32
    assert get_salt_from_key(raw) == bytes.fromhex("ab" * 32)


def test_offline_create2_deterministic():
    """Same inputs give the same address, any change gives another."""
    predictor = OfflineAddressPredictor()
    params = PredictionParams(salt="Operators", deployer_contract=FACTORY, init_code=HexBytes("0x6001600c60003960016000f300"))

    a = predictor.predict(DEPLOYER, "create2", params)
    b = predictor.predict(DEPLOYER, "create2", params)
    assert a == b

    other_salt = predictor.predict(DEPLOYER, "create2", PredictionParams(salt="Operators v2", deployer_contract=FACTORY, init_code=params.init_code))
    assert other_salt != a

    other_sender = predictor.predict(SENDER, "create2", params)
    assert other_sender != a


def test_offline_create2_formula():
    """Factory mixes the sender into the salt before EIP-1014."""
    init_code = HexBytes("0x6001600c60003960016000f300")
    predictor = OfflineAddressPredictor()
    address = predictor.predict(DEPLOYER, "create2", PredictionParams(salt="Operators", deployer_contract=FACTORY, init_code=init_code))

    salt = mix_salt(DEPLOYER, get_salt_from_key("Operators"))
    assert address == get_create2_address(FACTORY, salt, keccak(init_code))


def test_offline_create3_ignores_bytecode():
    """Create3 address depends only on the sender, factory and salt."""
    predictor = OfflineAddressPredictor()
    a = predictor.predict(DEPLOYER, "create3", PredictionParams(salt="Gateway", deployer_contract=FACTORY, init_code=HexBytes("0x00")))
    b = predictor.predict(DEPLOYER, "create3", PredictionParams(salt="Gateway", deployer_contract=FACTORY, init_code=HexBytes("0x6001600c60003960016000f300")))
    c = predictor.predict(DEPLOYER, "create3", PredictionParams(salt="Gateway", deployer_contract=FACTORY))
    assert a == b == c

    proxy = predictor.get_create3_proxy_address(DEPLOYER, FACTORY, get_salt_from_key("Gateway"))
    assert a == get_create_address(proxy, 1)


def test_offline_create_needs_nonce():
    predictor = OfflineAddressPredictor()
    with pytest.raises(ValidationError):
        predictor.predict(SENDER, "create", PredictionParams())

    assert predictor.predict(SENDER, "create", PredictionParams(nonce=1)).lower() == "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"


def test_predict_bad_inputs():
    predictor = OfflineAddressPredictor()

    with pytest.raises(UnsupportedMethodError):
        predictor.predict(DEPLOYER, "create4", PredictionParams())

    with pytest.raises(ValidationError):
        predictor.predict("0xnotanaddress", "create", PredictionParams(nonce=0))

    with pytest.raises(ValidationError):
        predictor.predict(DEPLOYER, "create2", PredictionParams(salt="x", deployer_contract=FACTORY))

    with pytest.raises(ValidationError):
        predictor.predict(DEPLOYER, "create3", PredictionParams(salt=" ", deployer_contract=FACTORY))

    with pytest.raises(ValidationError):
        predictor.predict(DEPLOYER, "create3", PredictionParams(salt="x"))


CREATE2_FACTORY = "0x98b2920d53612483f91f12ed7754e51b4a77919e"

CREATE3_FACTORY = "0x6513aedb4d1593ba12e50644401d976aebdc90d8"

#: ``CREATE_DEPLOY_BYTECODE_HASH`` of Create3Address.sol
CREATE_DEPLOY_HASH = bytes.fromhex("db4bab1640a2602c9f66f33765d12be4af115accf74b24515702961e82a71327")


def _deployed_address(factory: str, bytecode: bytes, sender: str, salt: bytes) -> str:
    """What ``deployedAddress()`` of ConstAddressDeployer and Create3Deployer return, byte by byte."""
    factory_bytes = bytes.fromhex(factory[2:])
    deploy_salt = keccak(bytes(12) + bytes.fromhex(sender[2:]) + salt)
    if factory == CREATE3_FACTORY:
        create_deploy = keccak(b"\xff" + factory_bytes + deploy_salt + CREATE_DEPLOY_HASH)[12:]
        return "0x" + keccak(b"\xd6\x94" + create_deploy + b"\x01")[12:].hex()
    return "0x" + keccak(b"\xff" + factory_bytes + deploy_salt + keccak(bytecode))[12:].hex()


def create_factory_web3() -> MagicMock:
    """Mocked web3 whose factory contracts answer like the deployed ones."""
    web3 = MagicMock()

    def contract(address, abi):
        factory = MagicMock()
        factory.functions.deployedAddress.side_effect = lambda bytecode, sender, salt: MagicMock(
            call=MagicMock(return_value=_deployed_address(address.lower(), bytes(bytecode), sender.lower(), bytes(salt)))
        )
        return factory

    web3.eth.contract.side_effect = contract
    return web3


@pytest.mark.parametrize(
    "deployer,salt,init_code",
    [
        (DEPLOYER, "Operators", "0x6001600c60003960016000f300"),
        (SENDER, "InterchainGovernance", "0x600a600c600039600a6000f3602a60005260206000f3"),
        ("0x00000000000000000000000000000000000000ff", "0x" + "11" * 32, "0x00"),
        (DEPLOYER, "Multisig v5.5", "0x" + "60" * 200),
    ],
)
@pytest.mark.parametrize("method", ["create2", "create3"])
def test_offline_online_conformance(deployer, salt, init_code, method):
    """Offline formula, online factory call and the factory's own derivation agree."""
    init_code = HexBytes(init_code)
    factory = CREATE2_FACTORY if method == "create2" else CREATE3_FACTORY
    params = PredictionParams(salt=salt, deployer_contract=factory, init_code=init_code)

    bytecode = bytes(init_code) if method == "create2" else b""
    expected = to_checksum_address(_deployed_address(factory, bytecode, deployer, get_salt_from_key(salt)))

    assert OfflineAddressPredictor().predict(deployer, method, params) == expected
    assert OnlineAddressPredictor(create_factory_web3(), "Avalanche").predict(deployer, method, params) == expected


def test_create_deploy_hash_pinned():
    assert bytes(CREATE_DEPLOY_BYTECODE_HASH) == CREATE_DEPLOY_HASH


def test_online_predictor_call_arguments():
    """The factory gets the init code, the sender and the 32 bytes salt."""
    offline = OfflineAddressPredictor()
    init_code = HexBytes("0x6001600c60003960016000f300")
    params = PredictionParams(salt="Operators", deployer_contract=FACTORY, init_code=init_code)
    expected = offline.predict(DEPLOYER, "create2", params)

    web3 = MagicMock()
    factory = web3.eth.contract.return_value
    factory.functions.deployedAddress.return_value.call.return_value = expected.lower()

    online = OnlineAddressPredictor(web3, "Avalanche")
    assert online.predict(DEPLOYER, "create2", params) == expected

    factory.functions.deployedAddress.assert_called_once_with(bytes(init_code), to_checksum_address(DEPLOYER), get_salt_from_key("Operators"))


def test_online_create3_sends_empty_bytecode():
    web3 = MagicMock()
    factory = web3.eth.contract.return_value
    factory.functions.deployedAddress.return_value.call.return_value = SENDER

    online = OnlineAddressPredictor(web3, "Avalanche")
    online.predict(DEPLOYER, "create3", PredictionParams(salt="Gateway", deployer_contract=FACTORY, init_code=HexBytes("0x00")))

    factory.functions.deployedAddress.assert_called_once_with(b"", to_checksum_address(DEPLOYER), get_salt_from_key("Gateway"))


def test_online_create_reads_nonce():
    web3 = MagicMock()
    web3.eth.get_transaction_count.return_value = 2
    online = OnlineAddressPredictor(web3, "Avalanche")
    assert online.predict(SENDER, "create", PredictionParams()).lower() == "0xf778b86fa74e846c4f0a1fbd1335fe81c00a0c91"


def test_online_factory_failure():
    web3 = MagicMock()
    web3.eth.contract.return_value.functions.deployedAddress.return_value.call.side_effect = ValueError("execution reverted")
    online = OnlineAddressPredictor(web3, "Avalanche")
    with pytest.raises(NetworkError):
        online.predict(DEPLOYER, "create3", PredictionParams(salt="Gateway", deployer_contract=FACTORY))


def test_deploy_options(store):
    chain = store.get_chain("avalanche")

    assert get_deploy_options("create", None, chain).deployer_contract is None

    options = get_deploy_options("create2", "Operators", chain)
    assert options.deployer_contract == "0x98b2920d53612483f91f12ed7754e51b4a77919e"
    assert options.salt == "Operators"

    options = get_deploy_options("create3", "Operators", chain)
    assert options.deployer_contract == "0x6513aedb4d1593ba12e50644401d976aebdc90d8"

    del chain.contracts["Create3Deployer"]
    with pytest.raises(ConfigError):
        get_deploy_options("create3", "Operators", chain)

    with pytest.raises(ValidationError):
        get_deploy_options("create2", "", chain)
