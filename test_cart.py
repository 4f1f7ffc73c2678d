"""
test_cart.py: Tests for the sid-keyed cart: lines, pricing, shipping, credits.
Run: pytest test_cart.py -v
"""
import pytest
from decimal import Decimal

from storefront import create_app, db
from storefront.cart.models import Cart, CartCredit, CartLine
from storefront.cart.service import cart_summary, ordered_lines, replace_credit
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
        db.session.add(ProductVariant(product_id=101, store_code='en_ca', key='5-140-447-448',
                                      option_ids=[5, 140, 447, 448], price=Decimal('13.00')))
        db.session.commit()
        yield app.test_client()
        db.session.remove()
        db.drop_all()


def add_line(client, product_id=101, option_ids=OPTIONS, quantity=2, store='US'):
    return client.post('/cart/lines', json={
        'productId': product_id, 'optionIds': option_ids, 'quantity': quantity, 'store': store,
    })


# ── 1. Lines ──────────────────────────────────────────────────────

def test_empty_session_has_no_cart(client):
    resp = client.get('/cart/current')
    assert resp.status_code == 200
    assert resp.get_json() == {'ok': True, 'cart': None}


def test_add_line_prices_from_local_variant(client):
    resp = add_line(client)
    assert resp.status_code == 201
    data = resp.get_json()
    line = data['line']
    assert line['variantKey'] == '5-140-447-448'
    assert line['unitPriceCents'] == 1600          # 1000 cost × 1.6
    assert line['lineTotalCents'] == 3200
    assert data['cart']['subtotalCents'] == 3200
    assert data['cart']['currency'] == 'USD'
    assert resp.headers['Cache-Control'].startswith('no-store')


def test_lines_keep_insertion_order(client):
    add_line(client)
    add_line(client, product_id=202, option_ids=[2, 1], quantity=4)
    add_line(client, quantity=1)
    lines = client.get('/cart/current').get_json()['cart']['lines']
    assert [l['productId'] for l in lines] == [101, 202, 101]

    cart = Cart.query.one()
    assert [l.position for l in ordered_lines(cart)] == [0, 1, 2]


def test_price_miss_returns_structured_409(client):
    resp = add_line(client, option_ids=[999])
    assert resp.status_code == 409
    data = resp.get_json()
    assert data['ok'] is False
    assert data['code'] == 'price_miss'
    assert data['source'] == 'miss'
    assert data['reason'] == 'no_local_variant_price'
    assert CartLine.query.count() == 0


def test_add_line_validates_body(client):
    assert add_line(client, quantity=0).status_code == 400
    assert add_line(client, option_ids=[]).status_code == 400
    assert add_line(client, product_id='abc').status_code == 400


def test_currency_mismatch_rejected(client):
    add_line(client, store='US')
    resp = add_line(client, store='CA')
    assert resp.status_code == 400
    assert 'USD' in resp.get_json()['error']


def test_patch_quantity_requotes(client):
    line_id = add_line(client, quantity=1).get_json()['line']['id']
    resp = client.patch(f'/cart/lines/{line_id}', json={'quantity': 3})
    assert resp.status_code == 200
    line = resp.get_json()['line']
    # line-level markup: 3000 × 1.6 = 4800 → unit 1600
    assert (line['quantity'], line['unitPriceCents'], line['lineTotalCents']) == (3, 1600, 4800)

    assert client.patch(f'/cart/lines/{line_id}', json={'quantity': 0}).status_code == 400


def test_delete_line(client):
    line_id = add_line(client).get_json()['line']['id']
    resp = client.delete(f'/cart/lines/{line_id}')
    assert resp.status_code == 200
    assert resp.get_json()['cart']['lines'] == []
    assert client.delete(f'/cart/lines/{line_id}').status_code == 404


def test_cannot_touch_another_sessions_line(client):
    line_id = add_line(client).get_json()['line']['id']
    other = client.application.test_client()
    add_line(other)
    assert other.patch(f'/cart/lines/{line_id}', json={'quantity': 2}).status_code == 404
    assert other.delete(f'/cart/lines/{line_id}').status_code == 404


def test_line_routes_without_cart_404(client):
    resp = client.delete('/cart/lines/nope')
    assert resp.status_code == 404
    assert resp.get_json()['code'] == 'not_found'


# ── 2. Reprice ────────────────────────────────────────────────────

def test_reprice_reports_hits_and_misses(client):
    resp = client.post('/cart/lines/reprice', json={'store': 'CA', 'lines': [
        {'lineId': 'l1', 'productId': 101, 'optionIds': OPTIONS, 'quantity': 1},
        {'lineId': 'l2', 'productId': 202, 'optionIds': [1, 2], 'quantity': 1},
        {'lineId': '',   'productId': 101, 'optionIds': OPTIONS, 'quantity': 1},
        {'lineId': 'l3', 'productId': 0,   'optionIds': OPTIONS, 'quantity': 1},
        'junk',
    ]})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['storeCode'] == 'en_ca'
    by_id = {l['lineId']: l for l in data['lines']}
    assert set(by_id) == {'l1', 'l2'}
    assert by_id['l1']['source'] == 'local' and by_id['l1']['unitPriceCents'] == 1300
    assert by_id['l2']['source'] == 'miss' and by_id['l2']['reason'] == 'no_local_variant_price'


def test_reprice_rejects_bad_store(client):
    resp = client.post('/cart/lines/reprice', json={'store': 'UK', 'lines': []})
    assert resp.status_code == 400


# ── 3. Shipping ───────────────────────────────────────────────────

def test_choose_and_clear_shipping(client):
    add_line(client)
    resp = client.post('/cart/shipping', json={
        'carrier': 'UPS', 'method': 'Ground', 'cost': 12.345, 'days': 3,
        'country': 'us', 'state': 'NY', 'zip': '10001',
    })
    assert resp.status_code == 200
    cart = resp.get_json()['cart']
    assert cart['shippingCents'] == 1235
    assert cart['totalCents'] == 3200 + 1235
    assert cart['selectedShipping']['country'] == 'US'

    cart = client.delete('/cart/shipping').get_json()['cart']
    assert cart['shippingCents'] == 0
    assert cart['selectedShipping'] is None


@pytest.mark.parametrize('body', [
    {'carrier': 'UPS', 'cost': 5},
    {'carrier': 'UPS', 'method': 'Ground', 'cost': -1},
    {'carrier': 'UPS', 'method': 'Ground', 'cost': 'free'},
    {'carrier': 'UPS', 'method': 'Ground', 'cost': 'inf'},
])
def test_choose_shipping_validation(client, body):
    add_line(client)
    assert client.post('/cart/shipping', json=body).status_code == 400


# ── 4. Credits ────────────────────────────────────────────────────

def test_credits_discount_but_never_below_zero(client):
    add_line(client)
    cart = Cart.query.one()
    replace_credit(cart, 5000, reason='manual')
    db.session.commit()

    summary = cart_summary(cart)
    assert summary['creditsCents'] == 5000
    assert summary['discountCents'] == 3200
    assert summary['netSubtotalCents'] == 0

    resp = client.get('/cart/credits')
    assert resp.get_json()['creditsCents'] == 5000


def test_replace_credit_keeps_one_row_per_reason(client):
    add_line(client)
    cart = Cart.query.one()
    replace_credit(cart, 300, reason='manual')
    replace_credit(cart, 200, reason='manual')
    total = replace_credit(cart, 100, reason='promo')
    db.session.commit()
    assert total == 300
    assert CartCredit.query.filter_by(reason='manual').count() == 1


def test_admin_cart_credit(client):
    add_line(client)
    cart_id = client.get('/cart/current').get_json()['cart']['cartId']

    assert client.post(f'/admin/carts/{cart_id}/credits', json={'amountCents': 500}).status_code == 403

    resp = client.post(f'/admin/carts/{cart_id}/credits', json={'amountCents': 500, 'note': 'sorry'},
                       headers=ADMIN)
    assert resp.status_code == 200
    assert resp.get_json()['cart']['discountCents'] == 500

    bad = client.post(f'/admin/carts/{cart_id}/credits',
                      json={'amountCents': 500, 'reason': 'loyalty'}, headers=ADMIN)
    assert bad.status_code == 400
    assert client.post('/admin/carts/missing/credits', json={'amountCents': 1},
                       headers=ADMIN).status_code == 404


def test_unknown_route_is_json_404(client):
    resp = client.get('/nope')
    assert resp.status_code == 404
    assert resp.get_json()['ok'] is False


def test_wrong_method_is_json_405(client):
    resp = client.get('/cart/lines')
    assert resp.status_code == 405
    assert resp.get_json()['code'] == 'method_not_allowed'
