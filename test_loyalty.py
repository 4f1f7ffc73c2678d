"""
test_loyalty.py: Tests for loyalty rules, the wallet API, redemption holds
and points settled at order placement.
Run: pytest test_loyalty.py -v
"""
import pytest
from decimal import Decimal

from storefront import create_app, db
from storefront.cart.models import Cart
from storefront.loyalty.models import LoyaltyTransaction, LoyaltyWallet
from storefront.loyalty.rules import (
    compute_loyalty, credit_cents_to_points, earn_points_for_amount,
    is_valid_redeem_request, normalize_redeem_points, points_spent_on_discount,
    points_to_credit_cents,
)
from storefront.loyalty.wallet import award_points, debit_points, held_points
from storefront.orders.finalize import finalize_paid_order
from storefront.orders.models import Order
from storefront.pricing.models import ProductVariant

OPTIONS = [448, 5, 140, 447]
ADMIN = {'X-Admin-Token': 'test-admin-token'}


# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture(scope='function')
def client():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        db.session.add(ProductVariant(product_id=101, store_code='en_us', key='5-140-447-448',
                                      option_ids=[5, 140, 447, 448], price=Decimal('10.00')))
        db.session.add(ProductVariant(product_id=202, store_code='en_us', key='1-2',
                                      option_ids=[1, 2], price=Decimal('2.50')))
        db.session.commit()
        yield app.test_client()
        db.session.remove()
        db.drop_all()


def sign_in(client, user_id='user-1'):
    with client.session_transaction() as sess:
        sess['user_id'] = user_id


def grant(client, user_id, points):
    resp = client.post('/admin/loyalty/adjust',
                       json={'targetUserId': user_id, 'points': points}, headers=ADMIN)
    assert resp.status_code == 200
    return resp.get_json()


def add_line(client, product_id=101, option_ids=OPTIONS, quantity=2):
    resp = client.post('/cart/lines', json={
        'productId': product_id, 'optionIds': option_ids, 'quantity': quantity, 'store': 'US',
    })
    assert resp.status_code == 201
    return resp.get_json()


# ── 1. Rules ──────────────────────────────────────────────────────

@pytest.mark.parametrize('balance,tier,next_at', [
    (0, 'Bronze', 1000),
    (999, 'Bronze', 1),
    (1000, 'Silver', 4000),
    (5000, 'Gold', 15000),
    (25000, 'Platinum', None),
    (-50, 'Bronze', 1000),
])
def test_compute_loyalty_tiers(balance, tier, next_at):
    snap = compute_loyalty(balance)
    assert snap['tier'] == tier
    assert snap['nextTierAt'] == next_at
    assert snap['balance'] == snap['points'] == max(0, balance)


def test_points_and_credit_conversion():
    assert points_to_credit_cents(200) == 200
    assert credit_cents_to_points(350) == 350
    assert points_to_credit_cents(-5) == 0


def test_earn_points_round_half_up():
    assert earn_points_for_amount(3200, 'USD') == 320
    assert earn_points_for_amount(1005, 'cad') == 101     # 100.5 → 101
    assert earn_points_for_amount(1004, 'USD') == 100
    assert earn_points_for_amount(5000, 'EUR') == 0


def test_redeem_request_rules():
    assert normalize_redeem_points(250) == 200
    assert normalize_redeem_points(99) == 0
    assert is_valid_redeem_request(100)
    assert not is_valid_redeem_request(150)
    assert not is_valid_redeem_request(0)


def test_points_spent_follow_the_discount():
    # whole hold used
    assert points_spent_on_discount(500, 500, 0, 500) == 500
    # cart shrank below the hold
    assert points_spent_on_discount(3200, 3200, 0, 400) == 400
    # other credits discount first
    assert points_spent_on_discount(500, 500, 300, 600) == 300
    assert points_spent_on_discount(500, 500, 600, 600) == 0


# ── 2. Wallet ledger ──────────────────────────────────────────────

def test_award_and_debit_never_go_negative(client):
    award_points('user-9', 300, note='welcome')
    assert debit_points('user-9', 500) == 300
    assert debit_points('user-9', 100) == 0
    db.session.commit()

    wallet = LoyaltyWallet.query.filter_by(user_id='user-9').one()
    assert (wallet.points_balance, wallet.lifetime_earned, wallet.lifetime_redeemed) == (0, 300, 300)
    assert [t.delta_points for t in wallet.transactions.order_by(LoyaltyTransaction.id)] == [300, -300]


def test_award_non_positive_is_noop(client):
    assert award_points('user-9', 0) is None
    assert LoyaltyWallet.query.count() == 0


# ── 3. Wallet API ─────────────────────────────────────────────────

def test_wallet_requires_sign_in(client):
    resp = client.get('/loyalty/')
    assert resp.status_code == 401
    assert resp.get_json()['code'] == 'unauthorized'
    assert client.post('/loyalty/redeem', json={'points': 100}).status_code == 401


def test_empty_wallet_snapshot(client):
    sign_in(client)
    data = client.get('/loyalty/').get_json()
    assert data['wallet']['balance'] == 0
    assert data['wallet']['tier'] == 'Bronze'
    assert data['rules'] == {'redeemMinPoints': 100, 'redeemIncrement': 100,
                             'redeemPointsPerUnit': 100}


def test_admin_adjust(client):
    resp = client.post('/admin/loyalty/adjust', json={'targetUserId': 'user-1', 'points': 500})
    assert resp.status_code == 403

    assert grant(client, 'user-1', 1200)['wallet']['tier'] == 'Silver'

    resp = client.post('/admin/loyalty/adjust', json={'targetUserId': 'user-1', 'points': -5000},
                       headers=ADMIN)
    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'insufficient_points'

    resp = client.post('/admin/loyalty/adjust', json={'targetUserId': 'user-1', 'points': 0},
                       headers=ADMIN)
    assert resp.status_code == 400

    sign_in(client, 'user-1')
    history = client.get('/loyalty/history').get_json()['transactions']
    assert [(t['deltaPoints'], t['reason']) for t in history] == [(1200, 'adjustment')]


# ── 4. Redeem ─────────────────────────────────────────────────────

def test_redeem_holds_points_on_cart(client):
    grant(client, 'user-1', 1000)
    sign_in(client, 'user-1')
    add_line(client)                 # 3200

    resp = client.post('/loyalty/redeem', json={'points': 500})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['redeemedPoints'] == 500
    assert data['creditCents'] == 500
    assert data['cart']['discountCents'] == 500
    assert data['wallet']['balance'] == 1000
    assert data['wallet']['heldPoints'] == 500
    assert data['wallet']['availablePoints'] == 500

    # redeeming again replaces the hold instead of stacking
    data = client.post('/loyalty/redeem', json={'points': 300}).get_json()
    assert data['cart']['creditsCents'] == 300
    assert data['wallet']['heldPoints'] == 300


@pytest.mark.parametrize('points', [0, 50, 150, 'lots'])
def test_redeem_rejects_invalid_points(client, points):
    grant(client, 'user-1', 1000)
    sign_in(client, 'user-1')
    add_line(client)
    resp = client.post('/loyalty/redeem', json={'points': points})
    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'invalid_points'


def test_redeem_beyond_balance(client):
    grant(client, 'user-1', 300)
    sign_in(client, 'user-1')
    add_line(client)
    resp = client.post('/loyalty/redeem', json={'points': 400})
    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'insufficient_points'


def test_redeem_without_cart_is_404(client):
    grant(client, 'user-1', 300)
    sign_in(client, 'user-1')
    assert client.post('/loyalty/redeem', json={'points': 100}).status_code == 404


def test_redeem_clamped_to_cart_subtotal(client):
    grant(client, 'user-1', 2000)
    sign_in(client, 'user-1')
    add_line(client, product_id=202, option_ids=[1, 2], quantity=1)   # 400

    data = client.post('/loyalty/redeem', json={'points': 1000}).get_json()
    assert data['redeemedPoints'] == 400
    assert data['creditCents'] == 400
    assert data['cart']['netSubtotalCents'] == 0


def test_redeem_on_empty_cart_is_too_small(client):
    grant(client, 'user-1', 2000)
    sign_in(client, 'user-1')
    line_id = add_line(client)['line']['id']
    client.delete(f'/cart/lines/{line_id}')
    resp = client.post('/loyalty/redeem', json={'points': 100})
    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'cart_too_small'


def test_release_hold(client):
    grant(client, 'user-1', 1000)
    sign_in(client, 'user-1')
    add_line(client)
    client.post('/loyalty/redeem', json={'points': 500})

    resp = client.delete('/loyalty/redeem')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['wallet']['heldPoints'] == 0
    assert data['cart']['creditsCents'] == 0


def test_points_held_on_one_cart_are_not_spendable_on_another(client):
    grant(client, 'user-1', 600)
    sign_in(client, 'user-1')
    add_line(client)
    assert client.post('/loyalty/redeem', json={'points': 500}).status_code == 200

    other = client.application.test_client()
    sign_in(other, 'user-1')
    add_line(other)
    resp = other.post('/loyalty/redeem', json={'points': 200})
    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'insufficient_points'
    assert held_points('user-1') == 500


# ── 5. Settlement at order placement ──────────────────────────────

def test_order_debits_held_points_and_awards_earned(client):
    grant(client, 'user-1', 1000)
    sign_in(client, 'user-1')
    add_line(client)                 # 3200
    client.post('/loyalty/redeem', json={'points': 500})
    cart = Cart.query.one()

    order, created = finalize_paid_order('stripe', 'pi_loyal', cart_id=cart.id,
                                         settled_total_cents=2700)
    assert created is True
    assert order.discount_cents == 500
    assert order.points_redeemed == 500
    assert order.points_earned == 270          # 10 per dollar of the 27.00 net

    wallet = LoyaltyWallet.query.filter_by(user_id='user-1').one()
    assert wallet.points_balance == 1000 - 500 + 270
    assert (wallet.lifetime_earned, wallet.lifetime_redeemed) == (1000 + 270, 500)
    assert held_points('user-1') == 0

    reasons = {t['reason'] for t in client.get('/loyalty/history').get_json()['transactions']}
    assert reasons == {'adjustment', 'redeem', 'purchase'}


def test_hold_larger_than_final_cart_only_spends_the_discount(client):
    grant(client, 'user-1', 5000)
    sign_in(client, 'user-1')
    line_id = add_line(client)['line']['id']                          # 3200
    assert client.post('/loyalty/redeem', json={'points': 3200}).status_code == 200

    client.delete(f'/cart/lines/{line_id}')
    add_line(client, product_id=202, option_ids=[1, 2], quantity=1)     # 400

    resp = client.post('/checkout/payment-intent', json={})
    assert resp.get_json()['free'] is True
    order = Order.query.one()
    assert order.discount_cents == 400
    assert order.points_redeemed == 400

    wallet = LoyaltyWallet.query.filter_by(user_id='user-1').one()
    assert wallet.points_balance == 5000 - 400
    assert held_points('user-1') == 0


def test_other_credits_are_applied_before_points(client):
    grant(client, 'user-1', 1000)
    sign_in(client, 'user-1')
    add_line(client)                                                    # 3200
    cart = Cart.query.one()
    client.post(f'/admin/carts/{cart.id}/credits', json={'amountCents': 3000}, headers=ADMIN)
    client.post('/loyalty/redeem', json={'points': 500})

    order, _ = finalize_paid_order('stripe', 'pi_mixed', cart_id=cart.id, settled_total_cents=0)
    assert (order.credits_cents, order.discount_cents) == (3500, 3200)
    assert order.points_redeemed == 200
    assert LoyaltyWallet.query.filter_by(user_id='user-1').one().points_balance == 800


def test_guest_order_earns_nothing(client):
    add_line(client)
    cart = Cart.query.one()
    order, _ = finalize_paid_order('stripe', 'pi_guest', cart_id=cart.id, settled_total_cents=3200)
    assert (order.points_redeemed, order.points_earned) == (0, 0)
    assert LoyaltyWallet.query.count() == 0
