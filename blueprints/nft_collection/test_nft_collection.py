import pytest

from hathor import Address, NCDepositAction, NCWithdrawalAction, TokenUid
from hathor.conf import HathorSettings
from hathor_tests.nanocontracts.blueprints.unittest import BlueprintTestCase

from blueprints.nft_collection.nft_collection import (
    NftCollection,
    InvalidConfig,
    Unauthorized,
    InvalidToken,
    TokenNotFound,
    InvalidActions,
    MintLimitExceeded,
    DEFAULT_ADMIN_ROLE,
    MINTER_ROLE,
    MAX_BATCH_MINT,
    DEFAULT_PUBLIC_MINT_LIMIT,
    DEFAULT_PUBLIC_MINT_WINDOW_SECS,
)

settings = HathorSettings()
HTR_UID = TokenUid(settings.HATHOR_TOKEN_UID)
ZERO_ADDRESS = Address(bytes(25))

ROYALTY_BPS = 250  # 2.5%
NFT_PRICE = 100_000_000
TOKEN_URI = "ipfs://QmTest123"


class TestNftCollection(BlueprintTestCase):
    """
    Unit tests for the collection ledger: roles, minting, burning, transfers,
    royalties and the public mint policy.
    """

    def setUp(self) -> None:
        super().setUp()

        self.blueprint_id = self.gen_random_blueprint_id()
        self.contract_id = self.gen_random_contract_id()
        self.nc_catalog.blueprints[self.blueprint_id] = NftCollection

        self.admin = self.gen_random_address()
        self.minter = self.gen_random_address()
        self.alice = self.gen_random_address()
        self.bob = self.gen_random_address()
        self.royalty_receiver = self.gen_random_address()

        ctx = self.create_context(caller_id=self.admin, timestamp=1)
        self.runner.create_contract(
            self.contract_id,
            self.blueprint_id,
            ctx,
            self.admin,
            self.royalty_receiver,
            ROYALTY_BPS,
            "Artistic Splash",
            "ARTS",
        )

        self._call(self.admin, "grant_role", MINTER_ROLE, self.minter)

    # -----------------------
    # Helpers
    # -----------------------

    def _call(self, caller, method: str, *args, ts: int = 10, actions=None):
        ctx = self.create_context(caller_id=caller, timestamp=ts, actions=actions or [])
        return self.runner.call_public_method(self.contract_id, method, ctx, *args)

    def _view(self, method: str, *args):
        return self.runner.call_view_method(self.contract_id, method, *args)

    def _mint(self, to: Address, uri: str = TOKEN_URI) -> int:
        token_id = self._call(self.minter, "safe_mint", to, uri)
        assert isinstance(token_id, int)
        return token_id

    def _events(self) -> list[bytes]:
        return [event.data for event in self.runner.get_last_call_info().nc_logger.__events__]

    def _public_mint(self, caller: Address, uri: str, ts: int, deposit: int = 0) -> int:
        actions = [NCDepositAction(token_uid=HTR_UID, amount=deposit)] if deposit else []
        return self._call(caller, "public_mint", uri, ts=ts, actions=actions)

    # -----------------------
    # Deployment
    # -----------------------

    def test_initialize_sets_metadata_roles_and_royalty(self):
        info = self._view("get_collection_info")
        assert info.name == "Artistic Splash"
        assert info.symbol == "ARTS"
        assert info.total_supply == 0
        assert info.next_token_id == 1

        assert self._view("has_role", DEFAULT_ADMIN_ROLE, self.admin) is True
        assert self._view("has_role", MINTER_ROLE, self.admin) is True
        assert self._view("has_role", DEFAULT_ADMIN_ROLE, self.alice) is False

        receiver, amount = self._view("royalty_info", 1, NFT_PRICE)
        assert receiver == self.royalty_receiver
        assert amount == NFT_PRICE * ROYALTY_BPS // 10_000

    def test_initialize_rejects_zero_admin(self):
        contract_id = self.gen_random_contract_id()
        ctx = self.create_context(caller_id=self.admin, timestamp=1)
        with pytest.raises(InvalidConfig):
            self.runner.create_contract(
                contract_id,
                self.blueprint_id,
                ctx,
                ZERO_ADDRESS,
                self.royalty_receiver,
                ROYALTY_BPS,
                "Artistic Splash",
                "ARTS",
            )

    def test_initialize_rejects_royalty_above_cap(self):
        contract_id = self.gen_random_contract_id()
        ctx = self.create_context(caller_id=self.admin, timestamp=1)
        with pytest.raises(InvalidConfig):
            self.runner.create_contract(
                contract_id,
                self.blueprint_id,
                ctx,
                self.admin,
                self.royalty_receiver,
                10_001,
                "Artistic Splash",
                "ARTS",
            )

    # -----------------------
    # Access control
    # -----------------------

    def test_only_admin_manages_roles(self):
        with pytest.raises(Unauthorized):
            self._call(self.minter, "grant_role", MINTER_ROLE, self.alice)
        assert self._view("has_role", MINTER_ROLE, self.alice) is False

        self._call(self.admin, "grant_role", MINTER_ROLE, self.alice)
        assert self._view("has_role", MINTER_ROLE, self.alice) is True

        self._call(self.admin, "revoke_role", MINTER_ROLE, self.alice)
        assert self._view("has_role", MINTER_ROLE, self.alice) is False
        with pytest.raises(Unauthorized):
            self._call(self.alice, "safe_mint", self.alice, TOKEN_URI)

    def test_unknown_role_and_zero_grantee_rejected(self):
        with pytest.raises(InvalidConfig):
            self._call(self.admin, "grant_role", "BURNER_ROLE", self.alice)
        with pytest.raises(InvalidConfig):
            self._call(self.admin, "grant_role", MINTER_ROLE, ZERO_ADDRESS)

    def test_has_role_is_false_for_unknown_role(self):
        assert self._view("has_role", "BURNER_ROLE", self.admin) is False
        assert self._view("has_role", DEFAULT_ADMIN_ROLE, self.admin) is True

    def test_renounce_role(self):
        self._call(self.minter, "renounce_role", MINTER_ROLE)
        assert self._view("has_role", MINTER_ROLE, self.minter) is False
        with pytest.raises(Unauthorized):
            self._mint(self.alice)

    # -----------------------
    # Minting
    # -----------------------

    def test_mint_records_owner_uri_and_supply(self):
        token_id = self._mint(self.alice)
        assert token_id == 1
        assert self._events() == [f"NFTMinted|{self.alice.hex()}|1|{TOKEN_URI}".encode()]
        assert self._view("owner_of", 1) == self.alice
        assert self._view("token_uri", 1) == TOKEN_URI
        assert self._view("total_supply") == 1
        assert self._view("balance_of", self.alice) == 1

        assert self._call(self.admin, "mint", self.bob, "ipfs://2") == 2
        assert self._events() == [f"NFTMinted|{self.bob.hex()}|2|ipfs://2".encode()]

        assert self._call(self.minter, "safe_mint", self.bob, "ipfs://3") == 3
        assert self._events() == [f"NFTMinted|{self.bob.hex()}|3|ipfs://3".encode()]
        assert self._view("total_supply") == 3
        assert self._view("balance_of", self.bob) == 2

    def test_non_minter_cannot_mint(self):
        with pytest.raises(Unauthorized):
            self._call(self.bob, "safe_mint", self.bob, TOKEN_URI)
        assert self._view("total_supply") == 0

    def test_mint_to_zero_address_fails_without_supply_change(self):
        self._mint(self.alice)
        with pytest.raises(InvalidConfig):
            self._mint(ZERO_ADDRESS)
        assert self._view("total_supply") == 1
        assert self._view("get_collection_info").next_token_id == 2

    def test_mint_with_empty_uri_fails(self):
        with pytest.raises(InvalidToken):
            self._mint(self.alice, "")
        assert self._view("total_supply") == 0

    def test_batch_mint_assigns_sequential_ids(self):
        self._mint(self.bob)
        ids = self._call(self.minter, "batch_mint", self.alice, ["ipfs://1", "ipfs://2", "ipfs://3"])
        assert ids == [2, 3, 4]
        assert self._view("total_supply") == 4
        for token_id in ids:
            assert self._view("owner_of", token_id) == self.alice
        assert self._view("token_uri", 3) == "ipfs://2"

    def test_batch_mint_is_all_or_nothing(self):
        with pytest.raises(InvalidToken):
            self._call(self.minter, "batch_mint", self.alice, ["ipfs://1", "", "ipfs://3"])
        assert self._view("total_supply") == 0

        with pytest.raises(InvalidConfig):
            self._call(self.minter, "batch_mint", self.alice, [])

        too_many = [f"ipfs://{i}" for i in range(MAX_BATCH_MINT + 1)]
        with pytest.raises(InvalidConfig):
            self._call(self.minter, "batch_mint", self.alice, too_many)

        with pytest.raises(Unauthorized):
            self._call(self.bob, "batch_mint", self.bob, ["ipfs://1"])

    # -----------------------
    # Public mint
    # -----------------------

    def test_public_mint_mints_to_caller(self):
        token_id = self._public_mint(self.bob, "ipfs://pub", ts=100)
        assert self._view("owner_of", token_id) == self.bob

        status = self._view("get_public_mint_status", self.bob, 101)
        assert status.minted_in_window == 1
        assert status.remaining_in_window == DEFAULT_PUBLIC_MINT_LIMIT - 1
        assert status.window_resets_at == 100 + DEFAULT_PUBLIC_MINT_WINDOW_SECS

    def test_public_mint_limit_per_window(self):
        for i in range(DEFAULT_PUBLIC_MINT_LIMIT):
            self._public_mint(self.bob, f"ipfs://{i}", ts=100 + i)

        with pytest.raises(MintLimitExceeded):
            self._public_mint(self.bob, "ipfs://over", ts=200)
        assert self._view("total_supply") == DEFAULT_PUBLIC_MINT_LIMIT

        # Other callers have their own window
        self._public_mint(self.alice, "ipfs://alice", ts=201)

        # Window elapsed: quota resets
        later = 100 + DEFAULT_PUBLIC_MINT_WINDOW_SECS
        self._public_mint(self.bob, "ipfs://next-day", ts=later)
        assert self._view("get_public_mint_status", self.bob, later).minted_in_window == 1

    def test_public_mint_disabled(self):
        self._call(self.admin, "set_public_mint_config", False, HTR_UID, 0, 5, 60)
        with pytest.raises(Unauthorized):
            self._public_mint(self.bob, "ipfs://pub", ts=100)

    def test_paid_public_mint_and_fee_withdrawal(self):
        self._call(self.admin, "set_public_mint_config", True, HTR_UID, 500, 2, 60)

        with pytest.raises(InvalidActions):
            self._public_mint(self.bob, "ipfs://cheap", ts=100, deposit=499)
        with pytest.raises(InvalidActions):
            self._public_mint(self.bob, "ipfs://free", ts=100)

        self._public_mint(self.bob, "ipfs://paid", ts=100, deposit=500)
        self._public_mint(self.alice, "ipfs://paid-2", ts=101, deposit=500)
        assert self._view("get_mint_fee_balance") == 1000

        withdraw = [NCWithdrawalAction(token_uid=HTR_UID, amount=1000)]
        with pytest.raises(Unauthorized):
            self._call(self.bob, "withdraw_mint_fees", ts=102, actions=withdraw)

        with pytest.raises(InvalidActions):
            self._call(
                self.admin,
                "withdraw_mint_fees",
                ts=102,
                actions=[NCWithdrawalAction(token_uid=HTR_UID, amount=999)],
            )

        self._call(self.admin, "withdraw_mint_fees", ts=103, actions=withdraw)
        assert self._view("get_mint_fee_balance") == 0

    def test_free_public_mint_rejects_deposit(self):
        with pytest.raises(InvalidActions):
            self._public_mint(self.bob, "ipfs://pub", ts=100, deposit=10)

    def test_public_mint_config_validation(self):
        with pytest.raises(Unauthorized):
            self._call(self.bob, "set_public_mint_config", True, HTR_UID, 0, 5, 60)
        with pytest.raises(InvalidConfig):
            self._call(self.admin, "set_public_mint_config", True, HTR_UID, -1, 5, 60)
        with pytest.raises(InvalidConfig):
            self._call(self.admin, "set_public_mint_config", True, HTR_UID, 0, 0, 60)
        with pytest.raises(InvalidConfig):
            self._call(self.admin, "set_public_mint_config", True, HTR_UID, 0, 5, 0)

    # -----------------------
    # Burn
    # -----------------------

    def test_owner_burns_token(self):
        self._mint(self.alice)
        self._mint(self.alice, "ipfs://2")

        self._call(self.alice, "burn", 1)
        with pytest.raises(TokenNotFound):
            self._view("owner_of", 1)
        assert self._view("exists", 1) is False
        assert self._view("total_supply") == 1
        assert self._view("balance_of", self.alice) == 1

        # Burned ids are not reused
        assert self._mint(self.bob) == 3
        with pytest.raises(TokenNotFound):
            self._call(self.alice, "burn", 1)

    def test_non_owner_cannot_burn(self):
        self._mint(self.alice)
        with pytest.raises(Unauthorized):
            self._call(self.bob, "burn", 1)
        with pytest.raises(Unauthorized):
            self._call(self.admin, "burn", 1)
        assert self._view("owner_of", 1) == self.alice

    # -----------------------
    # Transfers / approvals
    # -----------------------

    def test_owner_transfers_and_approval_is_cleared(self):
        self._mint(self.alice)
        self._call(self.alice, "approve", self.bob, 1)
        assert self._view("get_approved", 1) == self.bob.hex()

        self._call(self.alice, "transfer_from", self.alice, self.bob, 1)
        assert self._view("owner_of", 1) == self.bob
        assert self._view("get_approved", 1) == ""
        assert self._view("balance_of", self.alice) == 0
        assert self._view("balance_of", self.bob) == 1

    def test_approved_account_may_transfer_once(self):
        self._mint(self.alice)
        self._call(self.alice, "approve", self.bob, 1)
        self._call(self.bob, "transfer_from", self.alice, self.royalty_receiver, 1)
        assert self._view("owner_of", 1) == self.royalty_receiver

        with pytest.raises(Unauthorized):
            self._call(self.bob, "transfer_from", self.royalty_receiver, self.bob, 1)

    def test_operator_may_transfer_any_token(self):
        self._call(self.minter, "batch_mint", self.alice, ["ipfs://1", "ipfs://2"])
        self._call(self.alice, "set_approval_for_all", self.bob, True)
        assert self._view("is_approved_for_all", self.alice, self.bob) is True

        self._call(self.bob, "transfer_from", self.alice, self.bob, 2)
        assert self._view("owner_of", 2) == self.bob

        self._call(self.alice, "set_approval_for_all", self.bob, False)
        with pytest.raises(Unauthorized):
            self._call(self.bob, "transfer_from", self.alice, self.bob, 1)

    def test_transfer_validation(self):
        self._mint(self.alice)
        with pytest.raises(Unauthorized):
            self._call(self.bob, "transfer_from", self.alice, self.bob, 1)
        with pytest.raises(Unauthorized):
            self._call(self.alice, "transfer_from", self.bob, self.alice, 1)
        with pytest.raises(InvalidConfig):
            self._call(self.alice, "transfer_from", self.alice, ZERO_ADDRESS, 1)
        with pytest.raises(TokenNotFound):
            self._call(self.alice, "transfer_from", self.alice, self.bob, 99)
        with pytest.raises(Unauthorized):
            self._call(self.bob, "approve", self.bob, 1)

    # -----------------------
    # Royalties
    # -----------------------

    def test_royalty_amount_uses_floor_division(self):
        receiver, amount = self._view("royalty_info", 1, 10 * NFT_PRICE)
        assert receiver == self.royalty_receiver
        assert amount == 25_000_000

        _, amount = self._view("royalty_info", 1, 39)
        assert amount == 0  # 39 * 250 // 10_000

    def test_admin_updates_default_royalty(self):
        self._call(self.admin, "set_default_royalty", self.bob, 500)
        receiver, amount = self._view("royalty_info", 1, NFT_PRICE)
        assert receiver == self.bob
        assert amount == NFT_PRICE * 500 // 10_000

        with pytest.raises(Unauthorized):
            self._call(self.minter, "set_default_royalty", self.minter, 100)

    def test_royalty_above_cap_is_rejected_at_configuration(self):
        with pytest.raises(InvalidConfig):
            self._call(self.admin, "set_default_royalty", self.royalty_receiver, 10_001)

        self._call(self.admin, "set_default_royalty", self.royalty_receiver, 10_000)
        _, amount = self._view("royalty_info", 1, NFT_PRICE)
        assert amount == NFT_PRICE

    def test_token_royalty_override(self):
        self._mint(self.alice)
        self._mint(self.alice, "ipfs://2")
        self._call(self.admin, "set_token_royalty", 2, self.alice, 1_000)

        receiver, amount = self._view("royalty_info", 2, NFT_PRICE)
        assert receiver == self.alice
        assert amount == NFT_PRICE // 10

        receiver, _ = self._view("royalty_info", 1, NFT_PRICE)
        assert receiver == self.royalty_receiver

        self._call(self.admin, "reset_token_royalty", 2)
        receiver, _ = self._view("royalty_info", 2, NFT_PRICE)
        assert receiver == self.royalty_receiver

        with pytest.raises(TokenNotFound):
            self._call(self.admin, "set_token_royalty", 99, self.alice, 100)

    # -----------------------
    # Views
    # -----------------------

    def test_token_details_and_paging_skip_burned(self):
        self._call(self.minter, "batch_mint", self.alice, ["ipfs://1", "ipfs://2", "ipfs://3"])
        self._call(self.alice, "burn", 2)

        assert self._view("get_tokens_page", 1, 10) == [1, 3]
        assert self._view("get_tokens_page", 3, 1) == [3]

        details = self._view("get_token", 1)
        assert details.exists is True
        assert details.owner == self.alice.hex()
        assert details.uri == "ipfs://1"
        assert details.royalty_bps == ROYALTY_BPS

        assert self._view("get_token", 2).exists is False

        with pytest.raises(InvalidConfig):
            self._view("get_tokens_page", 1, 0)
