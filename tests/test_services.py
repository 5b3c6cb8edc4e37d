from datetime import datetime, timedelta

import pytest
from conftest import listing_fields

from foodshare import provision, services
from foodshare.database import FoodListing, ListingClaim
from foodshare.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


def _claim_reason(receiver, listing_id):
    with pytest.raises(ConflictError) as excinfo:
        services.claim_listing(receiver, listing_id)
    return excinfo.value.reason


def test_create_listing_defaults(session_local, uploads_dir, make_user):
    donor = make_user("Donor", name="Dana")
    fields = listing_fields()
    del fields["category"]

    listing = services.create_listing(donor, fields)

    assert listing.category == "Other"
    assert listing.donor_name == "Dana"
    assert listing.claims == []
    assert listing.image_url.startswith("https://placehold.co/")


def test_create_listing_requires_fields(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    fields = listing_fields()
    del fields["location"]

    with pytest.raises(ValidationError) as excinfo:
        services.create_listing(donor, fields)
    assert "location" in excinfo.value.detail


@pytest.mark.parametrize(
    "overrides",
    [{"max_claims": "0"}, {"category": "Sweets"}, {"description": "   "}, {"expiry_time": "yesterday"}],
)
def test_create_listing_rejects_bad_values(session_local, uploads_dir, make_user, overrides):
    donor = make_user("Donor")
    with pytest.raises(ValidationError):
        services.create_listing(donor, listing_fields(**overrides))


def test_only_donors_create(session_local, uploads_dir, make_user):
    receiver = make_user("Receiver")
    with pytest.raises(ForbiddenError):
        services.create_listing(receiver, listing_fields())


def test_single_slot_claim_scenario(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    alice = make_user("Receiver", name="Alice")
    bob = make_user("Receiver", name="Bob")
    listing = services.create_listing(donor, listing_fields(max_claims="1"))

    claimed = services.claim_listing(alice, listing.id)
    assert [(c.receiver_id, c.receiver_name) for c in claimed.claims] == [(alice.id, "Alice")]

    # the listing is now full, which the fixed check order reports first
    assert _claim_reason(alice, listing.id) == "full"
    assert _claim_reason(bob, listing.id) == "full"


def test_duplicate_claim_rejected(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    alice = make_user("Receiver")
    listing = services.create_listing(donor, listing_fields(max_claims="3"))

    services.claim_listing(alice, listing.id)
    assert _claim_reason(alice, listing.id) == "duplicate"

    session = session_local()
    assert session.query(ListingClaim).filter_by(listing_id=listing.id).count() == 1
    assert session.get(FoodListing, listing.id).claim_count == 1
    session.close()


def test_expired_listing_rejects_claims(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    alice = make_user("Receiver")
    now = datetime.utcnow()
    listing = services.create_listing(
        donor,
        listing_fields(
            mfg_time=(now - timedelta(days=3)).isoformat(),
            expiry_time=(now - timedelta(days=1)).isoformat(),
            max_claims="5",
        ),
    )
    assert _claim_reason(alice, listing.id) == "expired"


def test_expired_wins_over_full(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    alice = make_user("Receiver")
    bob = make_user("Receiver")
    listing = services.create_listing(donor, listing_fields(max_claims="1"))
    services.claim_listing(alice, listing.id)

    later = datetime.utcnow() + timedelta(days=2)
    with pytest.raises(ConflictError) as excinfo:
        services.claim_listing(bob, listing.id, now=later)
    assert excinfo.value.reason == "expired"


def test_claim_capacity_checked_atomically(session_local, uploads_dir, make_user, monkeypatch):
    donor = make_user("Donor")
    alice = make_user("Receiver")
    listing = services.create_listing(donor, listing_fields(max_claims="1"))

    # another writer took the last slot; the stored counter is ahead of the
    # claims this request read
    session = session_local()
    session.get(FoodListing, listing.id).claim_count = 1
    session.commit()
    session.close()

    original_evaluate = services.evaluate_claim
    calls = []

    def stale_then_real(stored, receiver_id, now):
        calls.append(receiver_id)
        if len(calls) == 1:
            return services.ClaimDecision.ALLOW
        return original_evaluate(stored, receiver_id, now)

    monkeypatch.setattr(services, "evaluate_claim", stale_then_real)
    assert _claim_reason(alice, listing.id) == "full"

    session = session_local()
    assert session.query(ListingClaim).count() == 0
    assert session.get(FoodListing, listing.id).claim_count == 1
    session.close()


def test_claim_requires_receiver(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    listing = services.create_listing(donor, listing_fields())
    with pytest.raises(ForbiddenError):
        services.claim_listing(donor, listing.id)


def test_claim_missing_listing(session_local, make_user):
    alice = make_user("Receiver")
    with pytest.raises(NotFoundError):
        services.claim_listing(alice, 999)


def test_available_listings_filter_and_order(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    alice = make_user("Receiver")
    now = datetime.utcnow()

    later = services.create_listing(
        donor, listing_fields(description="later", expiry_time=(now + timedelta(days=3)).isoformat())
    )
    sooner = services.create_listing(
        donor, listing_fields(description="sooner", expiry_time=(now + timedelta(hours=5)).isoformat())
    )
    full = services.create_listing(donor, listing_fields(description="full", max_claims="1"))
    services.create_listing(
        donor,
        listing_fields(
            description="expired",
            mfg_time=(now - timedelta(days=2)).isoformat(),
            expiry_time=(now - timedelta(hours=1)).isoformat(),
        ),
    )
    services.claim_listing(alice, full.id)

    available = services.list_available_listings()

    assert [item.id for item in available] == [sooner.id, later.id]


def test_donor_and_receiver_views(session_local, uploads_dir, make_user):
    dana = make_user("Donor")
    other = make_user("Donor")
    alice = make_user("Receiver")
    first = services.create_listing(dana, listing_fields(description="first"))
    second = services.create_listing(dana, listing_fields(description="second"))
    foreign = services.create_listing(other, listing_fields(description="foreign"))
    services.claim_listing(alice, first.id)
    services.claim_listing(alice, foreign.id)

    mine = services.list_donor_listings(dana.id)
    claimed = services.list_claimed_listings(alice.id)

    assert [item.id for item in mine] == [second.id, first.id]
    assert [item.id for item in claimed] == [foreign.id, first.id]


def test_update_listing_fields(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    listing = services.create_listing(donor, listing_fields())

    updated = services.update_listing(
        donor, listing.id, {"description": "Three trays", "max_claims": "4", "quantity": None}
    )

    assert updated.description == "Three trays"
    assert updated.max_claims == 4
    assert updated.quantity == listing.quantity


def test_update_by_other_donor_forbidden(session_local, uploads_dir, make_user):
    owner = make_user("Donor")
    intruder = make_user("Donor")
    listing = services.create_listing(owner, listing_fields())
    with pytest.raises(ForbiddenError):
        services.update_listing(intruder, listing.id, {"description": "mine now"})


def test_update_cannot_drop_capacity_below_claims(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    alice = make_user("Receiver")
    bob = make_user("Receiver")
    listing = services.create_listing(donor, listing_fields(max_claims="3"))
    services.claim_listing(alice, listing.id)
    services.claim_listing(bob, listing.id)

    with pytest.raises(ValidationError):
        services.update_listing(donor, listing.id, {"max_claims": "1"})

    assert services.update_listing(donor, listing.id, {"max_claims": "2"}).max_claims == 2


def test_update_rejects_expiry_before_mfg(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    listing = services.create_listing(donor, listing_fields())
    past = (datetime.utcnow() - timedelta(days=5)).isoformat()
    with pytest.raises(ValidationError):
        services.update_listing(donor, listing.id, {"expiry_time": past})


def test_delete_permissions(session_local, uploads_dir, make_user):
    owner = make_user("Donor")
    other = make_user("Donor")
    receiver = make_user("Receiver")
    provision.ensure_admin("boss@example.com", "secret123", "Boss")
    admin = services.authenticate_user("boss@example.com", "secret123")

    first = services.create_listing(owner, listing_fields())
    second = services.create_listing(owner, listing_fields())

    for actor in (other, receiver):
        with pytest.raises(ForbiddenError):
            services.delete_listing(actor, first.id)

    services.delete_listing(owner, first.id)
    services.delete_listing(admin, second.id)
    assert services.list_donor_listings(owner.id) == []

    with pytest.raises(NotFoundError):
        services.delete_listing(owner, first.id)


def test_delete_removes_claims(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    alice = make_user("Receiver")
    listing = services.create_listing(donor, listing_fields())
    services.claim_listing(alice, listing.id)

    services.delete_listing(donor, listing.id)

    session = session_local()
    assert session.query(ListingClaim).count() == 0
    session.close()


def test_dashboard_counts(session_local, uploads_dir, make_user):
    donor = make_user("Donor")
    alice = make_user("Receiver")
    open_listing = services.create_listing(donor, listing_fields())
    full = services.create_listing(donor, listing_fields(max_claims="1"))
    services.claim_listing(alice, full.id)

    session = session_local()
    old = session.get(FoodListing, open_listing.id)
    old.created_at = datetime.utcnow() - timedelta(days=60)
    session.commit()
    session.close()

    counts = services.dashboard_counts()
    assert counts.users.total == 2
    assert counts.listings.total == 2
    assert counts.listings.available == 1

    recent = services.dashboard_counts("1month")
    assert recent.listings.total == 1
    assert recent.listings.available == 0

    assert [item.id for item in services.list_all_listings("1month")] == [full.id]
    assert len(services.list_all_listings("bogus")) == 2


def test_concurrent_duplicate_claim_rejected(session_local, uploads_dir, make_user, monkeypatch):
    donor = make_user("Donor")
    alice = make_user("Receiver", name="Alice")
    listing = services.create_listing(donor, listing_fields(max_claims="3"))

    # a parallel request from the same receiver already committed its claim
    session = session_local()
    session.add(ListingClaim(listing_id=listing.id, receiver_id=alice.id, receiver_name="Alice"))
    session.get(FoodListing, listing.id).claim_count = 1
    session.commit()
    session.close()

    monkeypatch.setattr(services, "evaluate_claim", lambda *args: services.ClaimDecision.ALLOW)
    assert _claim_reason(alice, listing.id) == "duplicate"

    session = session_local()
    assert session.query(ListingClaim).filter_by(listing_id=listing.id).count() == 1
    assert session.get(FoodListing, listing.id).claim_count == 1
    session.close()
