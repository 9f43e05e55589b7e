from typing import NamedTuple
from hathor import (
    Address,
    Blueprint,
    CallerId,
    Context,
    NCDepositAction,
    NCFail,
    NCWithdrawalAction,
    TokenUid,
    export,
    public,
    view,
)

#
# === NFT COLLECTION BLUEPRINT ===
#
# Role-gated NFT collection ledger with ERC-2981 style royalties.
#
# Features:
# - DEFAULT_ADMIN_ROLE / MINTER_ROLE access control (admin manages roles)
# - Sequential token ids starting at 1, never reused after burn
# - Admin/minter mint, batch mint, and rate-limited public mint (optional mint price)
# - Owner-only burn
# - Transfers by owner, approved account, or operator (used by marketplace escrow)
# - Default and per-token royalty configuration; royalty_info() quote
#
# === ROLE CONSTANTS ===
#

DEFAULT_ADMIN_ROLE = "DEFAULT_ADMIN_ROLE"
MINTER_ROLE = "MINTER_ROLE"


#
# === LIMITS ===
#

BPS_DENOMINATOR = 10_000
MAX_ROYALTY_BPS = 10_000                        # 100.00%
MAX_BATCH_MINT = 50
DEFAULT_PUBLIC_MINT_LIMIT = 5                   # mints per window per caller
DEFAULT_PUBLIC_MINT_WINDOW_SECS = 24 * 60 * 60  # 1 day
MAX_PAGE_LIMIT = 200

HTR_UID = TokenUid(b"\x00")
ZERO_ADDRESS = Address(bytes(25))


#
# === VIEW RETURN TYPES ===
#

class CollectionInfo(NamedTuple):
    name: str
    symbol: str
    total_supply: int
    next_token_id: int
    default_royalty_receiver: str
    default_royalty_bps: int


class PublicMintStatus(NamedTuple):
    enabled: bool
    mint_token: str     # token uid hex
    price: int
    limit: int
    window_secs: int
    minted_in_window: int
    remaining_in_window: int
    window_resets_at: int   # 0 when caller has no open window


class TokenDetails(NamedTuple):
    token_id: int
    owner: str
    uri: str
    approved: str
    royalty_receiver: str
    royalty_bps: int
    exists: bool


#
# === CUSTOM FAIL TYPES ===
#

class CollectionError(NCFail):
    """Base class for collection failures."""


class InvalidConfig(CollectionError):
    """Invalid initialization, configuration or call parameters."""


class Unauthorized(CollectionError):
    """Caller lacks the role or ownership required for this operation."""


class InvalidToken(CollectionError):
    """Invalid token id or token metadata."""


class TokenNotFound(CollectionError):
    """Token was never minted or has been burned."""


class InvalidActions(CollectionError):
    """Invalid deposit/withdrawal actions."""


class MintLimitExceeded(CollectionError):
    """Caller exceeded the public mint rate limit."""


@export
class NftCollection(Blueprint):
    """
    NFT collection with role-based minting and royalty configuration.

    Identity model:
      - admin: passed to initialize(); holds DEFAULT_ADMIN_ROLE and MINTER_ROLE
      - owners may be wallet addresses or contracts (e.g. a marketplace holding escrow)

    Royalty model:
      - royalty_info() prefers a per-token override, else the default configuration
      - amount = sale_price * bps // 10_000 (floor)
    """

    name: str
    symbol: str

    # === Access control: (role, account) -> bool, one mapping per role ===
    admins: dict[Address, bool]
    minters: dict[Address, bool]

    # === Token ledger ===
    next_token_id: int
    supply: int
    owners: dict[int, CallerId]
    token_uris: dict[int, str]
    balances: dict[CallerId, int]
    token_approvals: dict[int, CallerId]
    operator_approvals: dict[str, bool]     # "<owner hex>:<operator hex>" -> approved

    # === Royalties ===
    default_royalty_receiver: Address
    default_royalty_bps: int
    token_royalty_receivers: dict[int, Address]
    token_royalty_bps: dict[int, int]

    # === Public mint policy ===
    public_mint_enabled: bool
    public_mint_token: TokenUid
    public_mint_price: int
    public_mint_limit: int
    public_mint_window_secs: int
    public_mint_window_starts: dict[Address, int]
    public_mint_counts: dict[Address, int]
    mint_fee_balance: int

    #
    # === INITIALIZE ===
    #

    @public
    def initialize(
        self,
        ctx: Context,
        admin: Address,
        royalty_receiver: Address,
        royalty_bps: int,
        name: str,
        symbol: str,
    ) -> None:
        """
        Initializes the collection.

        The admin receives both DEFAULT_ADMIN_ROLE and MINTER_ROLE. Public mint starts
        enabled and free, limited to DEFAULT_PUBLIC_MINT_LIMIT per window.
        """
        if admin == ZERO_ADDRESS:
            raise InvalidConfig("Admin address cannot be zero")
        self._validate_royalty(royalty_receiver, royalty_bps)
        if not name:
            raise InvalidConfig("Collection name cannot be empty")
        if not symbol:
            raise InvalidConfig("Collection symbol cannot be empty")

        self.name = name
        self.symbol = symbol

        self.admins = {}
        self.minters = {}
        self.admins[admin] = True
        self.minters[admin] = True

        self.next_token_id = 1
        self.supply = 0
        self.owners = {}
        self.token_uris = {}
        self.balances = {}
        self.token_approvals = {}
        self.operator_approvals = {}

        self.default_royalty_receiver = royalty_receiver
        self.default_royalty_bps = royalty_bps
        self.token_royalty_receivers = {}
        self.token_royalty_bps = {}

        self.public_mint_enabled = True
        self.public_mint_token = HTR_UID
        self.public_mint_price = 0
        self.public_mint_limit = DEFAULT_PUBLIC_MINT_LIMIT
        self.public_mint_window_secs = DEFAULT_PUBLIC_MINT_WINDOW_SECS
        self.public_mint_window_starts = {}
        self.public_mint_counts = {}
        self.mint_fee_balance = 0

    #
    # === ACCESS CONTROL ===
    #

    def _get_caller_address(self, ctx: Context) -> Address:
        """Returns the calling wallet address; contracts cannot hold roles."""
        caller = ctx.get_caller_address()
        if caller is None:
            raise Unauthorized("Caller must be a wallet address")
        return caller

    def _role_members(self, role: str) -> dict[Address, bool]:
        if role == DEFAULT_ADMIN_ROLE:
            return self.admins
        if role == MINTER_ROLE:
            return self.minters
        raise InvalidConfig("Unknown role")

    def _has_role(self, role: str, account: Address) -> bool:
        return self._role_members(role).get(account, False)

    def _only_role(self, ctx: Context, role: str) -> Address:
        caller = self._get_caller_address(ctx)
        if not self._has_role(role, caller):
            raise Unauthorized(f"Caller is missing {role}")
        return caller

    def _only_minter(self, ctx: Context) -> Address:
        """Admins may always mint; otherwise MINTER_ROLE is required."""
        caller = self._get_caller_address(ctx)
        if not (self._has_role(DEFAULT_ADMIN_ROLE, caller) or self._has_role(MINTER_ROLE, caller)):
            raise Unauthorized("Caller is not an admin or minter")
        return caller

    @public
    def grant_role(self, ctx: Context, role: str, account: Address) -> None:
        """Admin-only: grant `role` to `account`."""
        self._only_role(ctx, DEFAULT_ADMIN_ROLE)
        members = self._role_members(role)
        if account == ZERO_ADDRESS:
            raise InvalidConfig("Cannot grant role to zero address")
        if members.get(account, False):
            return
        members[account] = True
        self.log.info("role granted", role=role, account=str(account))
        self.syscall.emit_event(self._encode_event("RoleGranted", role, account))

    @public
    def revoke_role(self, ctx: Context, role: str, account: Address) -> None:
        """Admin-only: revoke `role` from `account`."""
        self._only_role(ctx, DEFAULT_ADMIN_ROLE)
        members = self._role_members(role)
        if account in members:
            del members[account]
            self.syscall.emit_event(self._encode_event("RoleRevoked", role, account))

    @public
    def renounce_role(self, ctx: Context, role: str) -> None:
        """Caller drops `role` from itself."""
        caller = self._get_caller_address(ctx)
        members = self._role_members(role)
        if caller in members:
            del members[caller]
            self.syscall.emit_event(self._encode_event("RoleRevoked", role, caller))

    #
    # === INTERNAL HELPERS ===
    #

    def _encode_event(self, name: str, *fields: object) -> bytes:
        parts = [name]
        for field in fields:
            if isinstance(field, bytes):
                parts.append(field.hex())
            else:
                parts.append(str(field))
        return "|".join(parts).encode("utf-8")

    def _operator_key(self, owner: CallerId, operator: CallerId) -> str:
        return f"{owner.hex()}:{operator.hex()}"

    def _require_owner(self, token_id: int) -> CallerId:
        owner = self.owners.get(token_id)
        if owner is None:
            raise TokenNotFound("Token does not exist")
        return owner

    def _validate_royalty(self, receiver: Address, bps: int) -> None:
        if bps < 0:
            raise InvalidConfig("Royalty fee must be non-negative")
        if bps > MAX_ROYALTY_BPS:
            raise InvalidConfig("Royalty fee too high")
        if receiver == ZERO_ADDRESS:
            raise InvalidConfig("Invalid royalty receiver")

    def _validate_mint(self, to: CallerId, uri: str) -> None:
        if to == ZERO_ADDRESS:
            raise InvalidConfig("Cannot mint to zero address")
        if not uri:
            raise InvalidToken("URI cannot be empty")

    def _mint(self, to: CallerId, uri: str) -> int:
        """Allocate the next id and record ownership. Callers validate first."""
        token_id = self.next_token_id
        self.next_token_id = token_id + 1

        self.owners[token_id] = to
        self.token_uris[token_id] = uri
        self.balances[to] = self.balances.get(to, 0) + 1
        self.supply += 1
        self.log.debug("token minted", token_id=token_id, owner=to.hex())

        self.syscall.emit_event(self._encode_event("NFTMinted", to, token_id, uri))
        return token_id

    def _is_approved_or_owner(self, spender: CallerId, token_id: int) -> bool:
        owner = self._require_owner(token_id)
        if spender == owner:
            return True
        if self.token_approvals.get(token_id) == spender:
            return True
        return self.operator_approvals.get(self._operator_key(owner, spender), False)

    def _consume_public_mint_quota(self, caller: Address, now: int) -> None:
        """Counts one public mint against the caller's current window."""
        start = self.public_mint_window_starts.get(caller, 0)
        count = self.public_mint_counts.get(caller, 0)

        if start == 0 or now >= start + self.public_mint_window_secs:
            start = now
            count = 0

        if count >= self.public_mint_limit:
            raise MintLimitExceeded("Public mint limit reached for this window")

        self.public_mint_window_starts[caller] = start
        self.public_mint_counts[caller] = count + 1

    def _process_mint_payment(self, ctx: Context) -> None:
        """Validate the deposit that pays for a public mint."""
        price = self.public_mint_price
        if price == 0:
            if len(ctx.actions) != 0:
                raise InvalidActions("Public mint is free; no deposit expected")
            return

        token_uid = self.public_mint_token
        if set(ctx.actions.keys()) != {token_uid}:
            raise InvalidActions("Deposit must include exactly the mint token")
        action = ctx.get_single_action(token_uid)
        if not isinstance(action, NCDepositAction):
            raise InvalidActions("Public mint payment must be a deposit")
        if action.amount != price:
            raise InvalidActions("Incorrect mint price")

        self.mint_fee_balance += price

    #
    # === MINTING ===
    #

    @public
    def mint(self, ctx: Context, to: CallerId, uri: str) -> int:
        """Admin/minter-only: mint one token to `to`. Returns the new token id."""
        self._only_minter(ctx)
        self._validate_mint(to, uri)
        return self._mint(to, uri)

    @public
    def safe_mint(self, ctx: Context, to: CallerId, uri: str) -> int:
        """Same as mint()."""
        return self.mint(ctx, to, uri)

    @public
    def batch_mint(self, ctx: Context, to: CallerId, uris: list[str]) -> list[int]:
        """Admin/minter-only: mint one token per URI with sequential ids."""
        self._only_minter(ctx)

        if len(uris) == 0:
            raise InvalidConfig("No URIs provided")
        if len(uris) > MAX_BATCH_MINT:
            raise InvalidConfig("Batch size exceeds limit")
        for uri in uris:
            self._validate_mint(to, uri)

        token_ids: list[int] = []
        for uri in uris:
            token_ids.append(self._mint(to, uri))
        return token_ids

    @public(allow_deposit=True)
    def public_mint(self, ctx: Context, uri: str) -> int:
        """
        Anyone may mint one token to themselves, subject to the public mint policy:
          - public_mint_enabled must be set
          - at most public_mint_limit mints per public_mint_window_secs per caller
          - when public_mint_price > 0 the call deposits exactly that amount
        """
        caller = self._get_caller_address(ctx)
        if not self.public_mint_enabled:
            raise Unauthorized("Public minting is disabled")
        self._validate_mint(caller, uri)

        self._consume_public_mint_quota(caller, ctx.block.timestamp)
        self._process_mint_payment(ctx)
        return self._mint(caller, uri)

    @public
    def set_public_mint_config(
        self,
        ctx: Context,
        enabled: bool,
        mint_token: TokenUid,
        price: int,
        limit: int,
        window_secs: int,
    ) -> None:
        """Admin-only: update the public mint policy."""
        self._only_role(ctx, DEFAULT_ADMIN_ROLE)

        if price < 0:
            raise InvalidConfig("Mint price must be >= 0")
        if limit <= 0:
            raise InvalidConfig("Mint limit must be > 0")
        if window_secs <= 0:
            raise InvalidConfig("Mint window must be > 0")
        if mint_token != self.public_mint_token and self.mint_fee_balance > 0:
            raise InvalidConfig("Withdraw collected mint fees before changing the mint token")

        self.public_mint_enabled = enabled
        self.public_mint_token = mint_token
        self.public_mint_price = price
        self.public_mint_limit = limit
        self.public_mint_window_secs = window_secs

    @public(allow_withdrawal=True)
    def withdraw_mint_fees(self, ctx: Context) -> None:
        """Admin-only: withdraw every collected public mint fee in a single withdrawal."""
        self._only_role(ctx, DEFAULT_ADMIN_ROLE)

        balance = self.mint_fee_balance
        if balance <= 0:
            raise InvalidActions("No mint fees to withdraw")
        self.mint_fee_balance = 0

        token_uid = self.public_mint_token
        if set(ctx.actions.keys()) != {token_uid}:
            raise InvalidActions("Withdraw must operate on exactly the mint token")
        action = ctx.get_single_action(token_uid)
        if not isinstance(action, NCWithdrawalAction):
            raise InvalidActions("Expected a withdrawal action")
        if action.amount != balance:
            raise InvalidActions("Incorrect withdrawal amount")

    #
    # === BURN / TRANSFER / APPROVALS ===
    #

    @public
    def burn(self, ctx: Context, token_id: int) -> None:
        """Owner-only, irreversible. The id is never reassigned."""
        owner = self._require_owner(token_id)
        if ctx.caller_id != owner:
            raise Unauthorized("Only owner can burn")

        del self.owners[token_id]
        del self.token_uris[token_id]
        if token_id in self.token_approvals:
            del self.token_approvals[token_id]
        if token_id in self.token_royalty_receivers:
            del self.token_royalty_receivers[token_id]
            del self.token_royalty_bps[token_id]

        self.balances[owner] = self.balances.get(owner, 0) - 1
        self.supply -= 1
        self.log.info("token burned", token_id=token_id)
        self.syscall.emit_event(self._encode_event("Burned", owner, token_id))

    @public
    def transfer_from(self, ctx: Context, from_: CallerId, to: CallerId, token_id: int) -> None:
        """
        Move `token_id` from `from_` to `to`.

        Caller must be the owner, the approved account for the token, or an operator
        approved for all of the owner's tokens.
        """
        owner = self._require_owner(token_id)
        if owner != from_:
            raise Unauthorized("Transfer from incorrect owner")
        if to == ZERO_ADDRESS:
            raise InvalidConfig("Cannot transfer to zero address")
        if not self._is_approved_or_owner(ctx.caller_id, token_id):
            raise Unauthorized("Caller is not token owner or approved")

        if token_id in self.token_approvals:
            del self.token_approvals[token_id]

        self.balances[from_] = self.balances.get(from_, 0) - 1
        self.balances[to] = self.balances.get(to, 0) + 1
        self.owners[token_id] = to
        self.syscall.emit_event(self._encode_event("Transfer", from_, to, token_id))

    @public
    def approve(self, ctx: Context, spender: CallerId, token_id: int) -> None:
        owner = self._require_owner(token_id)
        caller = ctx.caller_id
        if caller != owner and not self.operator_approvals.get(self._operator_key(owner, caller), False):
            raise Unauthorized("Caller is not token owner or approved for all")
        if spender == owner:
            raise InvalidConfig("Approval to current owner")

        self.token_approvals[token_id] = spender
        self.syscall.emit_event(self._encode_event("Approval", owner, spender, token_id))

    @public
    def set_approval_for_all(self, ctx: Context, operator: CallerId, approved: bool) -> None:
        caller = ctx.caller_id
        if operator == caller:
            raise InvalidConfig("Approve to caller")

        key = self._operator_key(caller, operator)
        if approved:
            self.operator_approvals[key] = True
        elif key in self.operator_approvals:
            del self.operator_approvals[key]
        self.syscall.emit_event(self._encode_event("ApprovalForAll", caller, operator, approved))

    #
    # === ROYALTY CONFIGURATION (ADMIN-ONLY) ===
    #

    @public
    def set_default_royalty(self, ctx: Context, receiver: Address, bps: int) -> None:
        self._only_role(ctx, DEFAULT_ADMIN_ROLE)
        self._validate_royalty(receiver, bps)
        self.default_royalty_receiver = receiver
        self.default_royalty_bps = bps

    @public
    def set_token_royalty(self, ctx: Context, token_id: int, receiver: Address, bps: int) -> None:
        """Per-token override; takes precedence over the default royalty."""
        self._only_role(ctx, DEFAULT_ADMIN_ROLE)
        self._require_owner(token_id)
        self._validate_royalty(receiver, bps)
        self.token_royalty_receivers[token_id] = receiver
        self.token_royalty_bps[token_id] = bps

    @public
    def reset_token_royalty(self, ctx: Context, token_id: int) -> None:
        self._only_role(ctx, DEFAULT_ADMIN_ROLE)
        if token_id in self.token_royalty_receivers:
            del self.token_royalty_receivers[token_id]
            del self.token_royalty_bps[token_id]

    #
    # === VIEWS ===
    #

    @view
    def royalty_info(self, token_id: int, sale_price: int) -> tuple[Address, int]:
        """Return (receiver, sale_price * bps // 10_000), preferring the per-token override."""
        if sale_price < 0:
            raise InvalidConfig("Sale price must be non-negative")

        receiver = self.token_royalty_receivers.get(token_id)
        if receiver is None:
            receiver = self.default_royalty_receiver
            bps = self.default_royalty_bps
        else:
            bps = self.token_royalty_bps[token_id]
        return receiver, sale_price * bps // BPS_DENOMINATOR

    @view
    def owner_of(self, token_id: int) -> CallerId:
        return self._require_owner(token_id)

    @view
    def token_uri(self, token_id: int) -> str:
        self._require_owner(token_id)
        return self.token_uris[token_id]

    @view
    def total_supply(self) -> int:
        return self.supply

    @view
    def balance_of(self, owner: CallerId) -> int:
        return self.balances.get(owner, 0)

    @view
    def exists(self, token_id: int) -> bool:
        return token_id in self.owners

    @view
    def get_approved(self, token_id: int) -> str:
        """Approved account for the token as hex, or "" if none."""
        self._require_owner(token_id)
        approved = self.token_approvals.get(token_id)
        return "" if approved is None else approved.hex()

    @view
    def is_approved_for_all(self, owner: CallerId, operator: CallerId) -> bool:
        return self.operator_approvals.get(self._operator_key(owner, operator), False)

    @view
    def has_role(self, role: str, account: Address) -> bool:
        if role not in (DEFAULT_ADMIN_ROLE, MINTER_ROLE):
            return False
        return self._has_role(role, account)

    @view
    def get_collection_info(self) -> CollectionInfo:
        return CollectionInfo(
            name=self.name,
            symbol=self.symbol,
            total_supply=self.supply,
            next_token_id=self.next_token_id,
            default_royalty_receiver=str(self.default_royalty_receiver),
            default_royalty_bps=self.default_royalty_bps,
        )

    @view
    def get_token(self, token_id: int) -> TokenDetails:
        """JSON-friendly token summary; exists=False for unknown or burned ids."""
        owner = self.owners.get(token_id)
        if owner is None:
            return TokenDetails(
                token_id=token_id,
                owner="",
                uri="",
                approved="",
                royalty_receiver="",
                royalty_bps=0,
                exists=False,
            )

        approved = self.token_approvals.get(token_id)
        receiver = self.token_royalty_receivers.get(token_id)
        if receiver is None:
            receiver = self.default_royalty_receiver
            bps = self.default_royalty_bps
        else:
            bps = self.token_royalty_bps[token_id]

        return TokenDetails(
            token_id=token_id,
            owner=owner.hex(),
            uri=self.token_uris[token_id],
            approved="" if approved is None else approved.hex(),
            royalty_receiver=str(receiver),
            royalty_bps=bps,
            exists=True,
        )

    @view
    def get_tokens_page(self, cursor: int, limit: int) -> list[int]:
        """
        Return live token ids in [cursor, cursor + limit) of the id space.

        Burned ids are skipped, so a page may hold fewer than `limit` ids.
        """
        if cursor < 1:
            cursor = 1
        if limit <= 0:
            raise InvalidConfig("limit must be > 0")
        if limit > MAX_PAGE_LIMIT:
            raise InvalidConfig("limit too large")

        end = cursor + limit
        if end > self.next_token_id:
            end = self.next_token_id

        ids: list[int] = []
        token_id = cursor
        while token_id < end:
            if token_id in self.owners:
                ids.append(token_id)
            token_id += 1
        return ids

    @view
    def get_public_mint_status(self, account: Address, current_timestamp: int) -> PublicMintStatus:
        """
        Public mint policy plus the account's usage of its current window.

        NOTE: @view cannot access Context, so caller must pass current_timestamp.
        """
        start = self.public_mint_window_starts.get(account, 0)
        count = self.public_mint_counts.get(account, 0)
        resets_at = 0
        if start == 0 or current_timestamp >= start + self.public_mint_window_secs:
            count = 0
        else:
            resets_at = start + self.public_mint_window_secs

        return PublicMintStatus(
            enabled=self.public_mint_enabled,
            mint_token=self.public_mint_token.hex(),
            price=self.public_mint_price,
            limit=self.public_mint_limit,
            window_secs=self.public_mint_window_secs,
            minted_in_window=count,
            remaining_in_window=self.public_mint_limit - count if self.public_mint_limit > count else 0,
            window_resets_at=resets_at,
        )

    @view
    def get_mint_fee_balance(self) -> int:
        return self.mint_fee_balance
