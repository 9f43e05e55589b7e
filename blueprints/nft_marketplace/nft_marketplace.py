from typing import NamedTuple
from hathor import (
    Address,
    Blueprint,
    Context,
    ContractId,
    NCDepositAction,
    NCFail,
    NCWithdrawalAction,
    TokenUid,
    export,
    public,
    view,
)

#
# === NFT ESCROW MARKETPLACE BLUEPRINT ===
#
# Fixed-price NFT marketplace that holds listed tokens in escrow.
#
# Features:
# - list_item moves the token into marketplace custody (collection approval required)
# - cancel_listing returns the token to the seller
# - buy_item takes an exact-price deposit, splits royalty / platform fee / seller proceeds
# - Pull payments: settlement only credits balances, withdraw_proceeds pays them out
# - Non-reentrant guard around every method that calls into a collection or pays out
# - Website-friendly views, counters, and listing-key pagination
#
# === FEE CONSTANTS ===
#

BPS_DENOMINATOR = 10_000
MAX_PLATFORM_FEE_BPS = 1_000  # 10.00%
MAX_PAGE_LIMIT = 200

ZERO_ADDRESS = Address(bytes(25))


#
# === VIEW RETURN TYPES (JSON-friendly) ===
#

class ListingView(NamedTuple):
    seller: str     # "" if never listed
    price: int
    active: bool


class ListingDetails(NamedTuple):
    nft: str        # collection contract id hex
    token_id: int
    seller: str
    price: int
    active: bool
    exists: bool


class ConfigView(NamedTuple):
    owner: str
    fee_recipient: str
    platform_fee_bps: int
    payment_token: str  # token uid hex


class SaleQuote(NamedTuple):
    price: int
    royalty_receiver: str
    royalty_amount: int
    platform_fee: int
    seller_amount: int


class ListingKeysPage(NamedTuple):
    cursor_in: int
    limit: int
    next_cursor: int
    keys: list[str]


class CountersView(NamedTuple):
    total_listings: int
    count_active: int
    count_sold: int
    count_cancelled: int
    total_volume: int
    total_royalties: int
    total_platform_fees: int


class AccountingView(NamedTuple):
    total_credited: int
    total_withdrawn: int
    outstanding: int


#
# === CUSTOM FAIL TYPES ===
#

class MarketplaceError(NCFail):
    """Base class for marketplace failures."""


class InvalidConfig(MarketplaceError):
    """Invalid initialization or configuration parameters."""


class Unauthorized(MarketplaceError):
    """Caller lacks permission for this operation."""


class NotListed(MarketplaceError):
    """No active listing for the requested key."""


class AlreadyListed(MarketplaceError):
    """An active listing already exists for the requested key."""


class NotTokenOwner(MarketplaceError):
    """Caller does not own the token it tries to list."""


class SelfTrade(MarketplaceError):
    """Seller tried to buy its own listing."""


class InvalidPayment(MarketplaceError):
    """Payment does not match the listing."""


class InvalidActions(MarketplaceError):
    """Invalid deposit/withdrawal actions."""


class NoProceeds(MarketplaceError):
    """Caller has nothing to withdraw."""


class ReentrantCall(MarketplaceError):
    """A guarded method was entered while another guarded call is in flight."""


@export
class NftMarketplace(Blueprint):
    """
    Escrow marketplace for NftCollection tokens.

    Identity model:
      - owner: caller identity at initialize(); manages fee configuration
      - seller: caller identity at list_item()
      - buyer: caller identity at buy_item()

    Listing state per (nft, token_id):
      Unlisted -> Listed -> Sold | Cancelled, where Sold and Cancelled only clear the
      active flag so the key can be listed again.

    Settlement model:
      - royalty from the collection's royalty_info(token_id, price)
      - platform fee = price * platform_fee_bps // 10_000
      - seller receives the rest, including any floor-division remainder
      - every share is credited to `proceeds`; nothing is paid during the sale
    """

    # === Contract-level roles/config ===
    owner: Address
    fee_recipient: Address
    platform_fee_bps: int
    payment_token: TokenUid

    # === Per-listing state, keyed by "<nft hex>:<token id>" ===
    listing_nfts: dict[str, ContractId]
    listing_token_ids: dict[str, int]
    listing_sellers: dict[str, Address]
    listing_prices: dict[str, int]
    listing_active: dict[str, bool]

    # For website paging (each key appears once, in first-listed order)
    listing_keys: list[str]

    # === Pull-payment ledger ===
    proceeds: dict[Address, int]
    total_credited: int
    total_withdrawn: int

    # === Reentrancy guard ===
    reentrancy_locked: bool

    # === Counters (website stats) ===
    total_listings: int
    count_active: int
    count_sold: int
    count_cancelled: int
    total_volume: int
    total_royalties: int
    total_platform_fees: int

    #
    # === INITIALIZE ===
    #

    @public
    def initialize(
        self,
        ctx: Context,
        platform_fee_bps: int,
        fee_recipient: Address,
        payment_token: TokenUid,
    ) -> None:
        """
        Initializes marketplace storage and configuration.

        Roles:
          - owner inferred from caller identity at initialize()
          - fee_recipient set explicitly

        Bounds:
          - 0 <= platform_fee_bps <= MAX_PLATFORM_FEE_BPS
        """
        owner = self._get_caller_id(ctx)
        self._validate_fee(platform_fee_bps)
        if fee_recipient == ZERO_ADDRESS:
            raise InvalidConfig("Invalid fee recipient")

        self.owner = owner
        self.fee_recipient = fee_recipient
        self.platform_fee_bps = platform_fee_bps
        self.payment_token = payment_token

        self.listing_nfts = {}
        self.listing_token_ids = {}
        self.listing_sellers = {}
        self.listing_prices = {}
        self.listing_active = {}
        self.listing_keys = []

        self.proceeds = {}
        self.total_credited = 0
        self.total_withdrawn = 0

        self.reentrancy_locked = False

        self.total_listings = 0
        self.count_active = 0
        self.count_sold = 0
        self.count_cancelled = 0
        self.total_volume = 0
        self.total_royalties = 0
        self.total_platform_fees = 0

    #
    # === OWNER-ONLY ADMIN ===
    #

    @public
    def set_platform_fee(self, ctx: Context, platform_fee_bps: int) -> None:
        """Owner-only: update the platform fee rate within bounds."""
        self._only_owner(ctx)
        self._validate_fee(platform_fee_bps)
        self.platform_fee_bps = platform_fee_bps
        self.log.info("platform fee updated", platform_fee_bps=platform_fee_bps)

    @public
    def set_fee_recipient(self, ctx: Context, fee_recipient: Address) -> None:
        """Owner-only: redirect future platform fees. Already credited fees stay put."""
        self._only_owner(ctx)
        if fee_recipient == ZERO_ADDRESS:
            raise InvalidConfig("Invalid fee recipient")
        self.fee_recipient = fee_recipient

    @public
    def transfer_ownership(self, ctx: Context, new_owner: Address) -> None:
        self._only_owner(ctx)
        if new_owner == ZERO_ADDRESS:
            raise InvalidConfig("New owner cannot be zero")
        self.owner = new_owner

    #
    # === INTERNAL HELPERS ===
    #

    def _get_caller_id(self, ctx: Context) -> Address:
        """Returns the caller identity (CallerID)."""
        caller = ctx.get_caller_address()
        if caller is None:
            raise Unauthorized("Caller identity is not available")
        return caller

    def _only_owner(self, ctx: Context) -> None:
        if self._get_caller_id(ctx) != self.owner:
            raise Unauthorized("Only the marketplace owner can update configuration")

    def _validate_fee(self, platform_fee_bps: int) -> None:
        if platform_fee_bps < 0:
            raise InvalidConfig("Fee must be non-negative")
        if platform_fee_bps > MAX_PLATFORM_FEE_BPS:
            raise InvalidConfig("Fee too high")

    def _enter(self) -> None:
        if self.reentrancy_locked:
            raise ReentrantCall("Reentrant call")
        self.reentrancy_locked = True

    def _exit(self) -> None:
        self.reentrancy_locked = False

    def _listing_key(self, nft: ContractId, token_id: int) -> str:
        if token_id < 0:
            raise InvalidConfig("Token ID must be non-negative")
        return f"{nft.hex()}:{token_id}"

    def _is_active(self, key: str) -> bool:
        return self.listing_active.get(key, False)

    def _collection(self, nft: ContractId):
        return self.syscall.get_contract(nft, blueprint_id=None)

    def _encode_event(self, name: str, *fields: object) -> bytes:
        parts = [name]
        for field in fields:
            if isinstance(field, bytes):
                parts.append(field.hex())
            else:
                parts.append(str(field))
        return "|".join(parts).encode("utf-8")

    def _credit(self, payee: Address, amount: int) -> None:
        if amount <= 0:
            return
        self.proceeds[payee] = self.proceeds.get(payee, 0) + amount
        self.total_credited += amount

    def _split(self, nft: ContractId, token_id: int, price: int) -> tuple[Address, int, int, int]:
        """Return (royalty_receiver, royalty, platform_fee, seller_amount) for a sale."""
        royalty_receiver, royalty = self._collection(nft).view().royalty_info(token_id, price)
        platform_fee = price * self.platform_fee_bps // BPS_DENOMINATOR

        if royalty < 0 or royalty + platform_fee > price:
            raise InvalidPayment("Royalty and fee exceed price")
        return royalty_receiver, royalty, platform_fee, price - royalty - platform_fee

    def _process_payment(self, ctx: Context, expected_amount: int) -> None:
        """Validate that this call deposits exactly expected_amount of the payment token."""
        token_uid = self.payment_token
        if set(ctx.actions.keys()) != {token_uid}:
            raise InvalidActions("Payment must include exactly the payment token")

        action = ctx.get_single_action(token_uid)
        if not isinstance(action, NCDepositAction):
            raise InvalidActions("Payment must be a deposit")
        if action.amount != expected_amount:
            raise InvalidPayment("Incorrect price")

    def _process_withdraw(self, ctx: Context, expected_amount: int) -> None:
        """Validate that this call withdraws exactly expected_amount of the payment token."""
        token_uid = self.payment_token
        if set(ctx.actions.keys()) != {token_uid}:
            raise InvalidActions("Withdraw must operate on exactly the payment token")

        action = ctx.get_single_action(token_uid)
        if not isinstance(action, NCWithdrawalAction):
            raise InvalidActions("Expected a withdrawal action")
        if action.amount != expected_amount:
            raise InvalidActions("Incorrect withdrawal amount")

    #
    # === LIST ===
    #

    @public
    def list_item(self, ctx: Context, nft: ContractId, token_id: int, price: int) -> None:
        """
        Seller lists a token it owns and hands it to marketplace custody.

        The seller must have approved this marketplace on the collection beforehand
        (approve() or set_approval_for_all()); the collection enforces that.
        """
        self._enter()
        seller = self._get_caller_id(ctx)

        if price <= 0:
            raise InvalidPayment("Price must be greater than zero")

        key = self._listing_key(nft, token_id)
        if self._is_active(key):
            raise AlreadyListed("Already listed")

        collection = self._collection(nft)
        if collection.view().owner_of(token_id) != seller:
            raise NotTokenOwner("Not token owner")

        if key not in self.listing_sellers:
            self.listing_keys.append(key)
            self.listing_nfts[key] = nft
            self.listing_token_ids[key] = token_id
        self.listing_sellers[key] = seller
        self.listing_prices[key] = price
        self.listing_active[key] = True

        self.total_listings += 1
        self.count_active += 1

        collection.public().transfer_from(seller, self.syscall.get_contract_id(), token_id)

        self.syscall.emit_event(self._encode_event("Listed", nft, token_id, seller, price))
        self.log.info("item listed", key=key, price=price)
        self._exit()

    @public
    def update_listing_price(self, ctx: Context, nft: ContractId, token_id: int, new_price: int) -> None:
        """Seller-only: reprice an active listing without leaving escrow."""
        key = self._listing_key(nft, token_id)
        if not self._is_active(key):
            raise NotListed("Not listed")

        caller = self._get_caller_id(ctx)
        if caller != self.listing_sellers[key]:
            raise Unauthorized("Not seller")
        if new_price <= 0:
            raise InvalidPayment("Price must be greater than zero")

        self.listing_prices[key] = new_price
        self.syscall.emit_event(self._encode_event("PriceUpdated", nft, token_id, caller, new_price))

    #
    # === CANCEL (SELLER-ONLY) ===
    #

    @public
    def cancel_listing(self, ctx: Context, nft: ContractId, token_id: int) -> None:
        """Seller-only: deactivate the listing and return the token."""
        self._enter()
        key = self._listing_key(nft, token_id)
        if not self._is_active(key):
            raise NotListed("Not listed")

        seller = self.listing_sellers[key]
        if self._get_caller_id(ctx) != seller:
            raise Unauthorized("Not seller")

        self.listing_active[key] = False
        self.count_active -= 1
        self.count_cancelled += 1

        self._collection(nft).public().transfer_from(self.syscall.get_contract_id(), seller, token_id)

        self.syscall.emit_event(self._encode_event("Cancelled", nft, token_id, seller))
        self.log.info("listing cancelled", key=key)
        self._exit()

    #
    # === BUY (SETTLEMENT) ===
    #

    @public(allow_deposit=True)
    def buy_item(self, ctx: Context, nft: ContractId, token_id: int) -> None:
        """
        Buyer deposits exactly the listed price and receives the token.

        Effects, in order: listing deactivated, shares credited to `proceeds`,
        then the token leaves custody for the buyer.
        """
        self._enter()
        key = self._listing_key(nft, token_id)
        if not self._is_active(key):
            raise NotListed("Not listed")

        buyer = self._get_caller_id(ctx)
        seller = self.listing_sellers[key]
        if buyer == seller:
            raise SelfTrade("Seller cannot buy own NFT")

        price = self.listing_prices[key]
        self._process_payment(ctx, price)

        royalty_receiver, royalty, platform_fee, seller_amount = self._split(nft, token_id, price)

        self.listing_active[key] = False
        self.count_active -= 1
        self.count_sold += 1

        self._credit(seller, seller_amount)
        self._credit(royalty_receiver, royalty)
        self._credit(self.fee_recipient, platform_fee)

        self.total_volume += price
        self.total_royalties += royalty
        self.total_platform_fees += platform_fee

        self._collection(nft).public().transfer_from(self.syscall.get_contract_id(), buyer, token_id)

        self.syscall.emit_event(self._encode_event("Bought", nft, token_id, buyer, seller, price))
        self.log.info("item bought", key=key, price=price, royalty=royalty, platform_fee=platform_fee)
        self._exit()

    #
    # === WITHDRAW PROCEEDS ===
    #

    @public(allow_withdrawal=True)
    def withdraw_proceeds(self, ctx: Context) -> None:
        """
        Pay out the caller's whole proceeds balance.

        The balance is zeroed before the withdrawal action is validated; the call must
        withdraw exactly that balance of the payment token.
        """
        self._enter()
        payee = self._get_caller_id(ctx)

        amount = self.proceeds.get(payee, 0)
        if amount <= 0:
            raise NoProceeds("No proceeds to withdraw")

        self.proceeds[payee] = 0
        self.total_withdrawn += amount

        self._process_withdraw(ctx, amount)

        self.syscall.emit_event(self._encode_event("ProceedsWithdrawn", payee, amount))
        self._exit()

    #
    # === VIEWS ===
    #

    @view
    def get_config(self) -> ConfigView:
        return ConfigView(
            owner=str(self.owner),
            fee_recipient=str(self.fee_recipient),
            platform_fee_bps=self.platform_fee_bps,
            payment_token=self.payment_token.hex(),
        )

    @view
    def get_listing(self, nft: ContractId, token_id: int) -> ListingView:
        """(seller, price, active); seller "" and price 0 when the key was never listed."""
        key = self._listing_key(nft, token_id)
        seller = self.listing_sellers.get(key)
        if seller is None:
            return ListingView(seller="", price=0, active=False)
        return ListingView(
            seller=str(seller),
            price=self.listing_prices[key],
            active=self._is_active(key),
        )

    @view
    def get_listing_by_key(self, key: str) -> ListingDetails:
        seller = self.listing_sellers.get(key)
        if seller is None:
            return ListingDetails(nft="", token_id=0, seller="", price=0, active=False, exists=False)
        return ListingDetails(
            nft=self.listing_nfts[key].hex(),
            token_id=self.listing_token_ids[key],
            seller=str(seller),
            price=self.listing_prices[key],
            active=self._is_active(key),
            exists=True,
        )

    @view
    def is_listed(self, nft: ContractId, token_id: int) -> bool:
        return self._is_active(self._listing_key(nft, token_id))

    @view
    def get_proceeds(self, payee: Address) -> int:
        return self.proceeds.get(payee, 0)

    @view
    def get_sale_quote(self, nft: ContractId, token_id: int) -> SaleQuote:
        """Quote the split an active listing would settle with at the current fee rate."""
        key = self._listing_key(nft, token_id)
        if not self._is_active(key):
            raise NotListed("Not listed")

        price = self.listing_prices[key]
        royalty_receiver, royalty, platform_fee, seller_amount = self._split(nft, token_id, price)
        return SaleQuote(
            price=price,
            royalty_receiver=str(royalty_receiver),
            royalty_amount=royalty,
            platform_fee=platform_fee,
            seller_amount=seller_amount,
        )

    @view
    def get_accounting(self) -> AccountingView:
        """Totals for the proceeds conservation check: credited == outstanding + withdrawn."""
        return AccountingView(
            total_credited=self.total_credited,
            total_withdrawn=self.total_withdrawn,
            outstanding=self.total_credited - self.total_withdrawn,
        )

    @view
    def get_counters(self) -> CountersView:
        """Return lightweight counters suitable for website stats."""
        return CountersView(
            total_listings=self.total_listings,
            count_active=self.count_active,
            count_sold=self.count_sold,
            count_cancelled=self.count_cancelled,
            total_volume=self.total_volume,
            total_royalties=self.total_royalties,
            total_platform_fees=self.total_platform_fees,
        )

    @view
    def get_listing_keys_page(self, cursor: int, limit: int, only_active: bool) -> ListingKeysPage:
        """
        Return a page of listing keys suitable for website pagination.

        - cursor is an index into the listing_keys array (NOT a token id)
        - next_cursor is 0 when no more data
        - with only_active, inactive keys inside the scanned window are skipped
        """
        return self._keys_page(cursor, limit, only_active, None)

    @view
    def get_seller_listing_keys_page(self, seller: Address, cursor: int, limit: int) -> ListingKeysPage:
        """Like get_listing_keys_page(only_active=True), restricted to one seller."""
        return self._keys_page(cursor, limit, True, seller)

    def _keys_page(self, cursor: int, limit: int, only_active: bool, seller: Address | None) -> ListingKeysPage:
        if cursor < 0:
            cursor = 0
        if limit <= 0:
            raise InvalidConfig("limit must be > 0")
        if limit > MAX_PAGE_LIMIT:
            raise InvalidConfig("limit too large")

        total = len(self.listing_keys)
        if cursor >= total:
            return ListingKeysPage(cursor_in=cursor, limit=limit, next_cursor=0, keys=[])

        end = cursor + limit
        if end > total:
            end = total

        keys: list[str] = []
        i = cursor
        while i < end:
            key = self.listing_keys[i]
            i += 1
            if only_active and not self._is_active(key):
                continue
            if seller is not None and self.listing_sellers[key] != seller:
                continue
            keys.append(key)

        next_cursor = 0 if end >= total else end
        return ListingKeysPage(cursor_in=cursor, limit=limit, next_cursor=next_cursor, keys=keys)
