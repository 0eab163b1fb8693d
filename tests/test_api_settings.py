"""
Tests for the merchant Settings API endpoints.
"""
import json


class TestGetSettings:
    """Tests for GET /api/settings/billfree."""

    def test_get_settings(self, client, shop_headers):
        response = client.get('/api/settings/billfree', headers=shop_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['shop'] == 'test-store.myshopify.com'
        assert data['settings'] == {
            'enabled': True,
            'has_auth_token': True,
            'default_dial_code': '91',
            'field_mappings': {'inv_no': 'order.name'}
        }
        assert 'bf-test-token' not in response.get_data(as_text=True)

    def test_unknown_shop_is_404(self, client, app):
        response = client.get('/api/settings/billfree', headers={'X-Shop-Domain': 'nobody.myshopify.com'})

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'SHOP_NOT_FOUND'

    def test_missing_shop_is_401(self, client, app):
        response = client.get('/api/settings/billfree')
        assert response.status_code == 401

    def test_inactive_shop_is_403(self, client, db, configured_shop, shop_headers):
        configured_shop.is_active = False
        db.session.commit()

        response = client.get('/api/settings/billfree', headers=shop_headers)
        assert response.status_code == 403

    def test_session_token_identifies_shop(self, client, configured_shop, make_session_token):
        token = make_session_token(sub='gid://shopify/StaffMember/1')
        response = client.get('/api/settings/billfree', headers={'Authorization': f'Bearer {token}'})

        assert response.status_code == 200


class TestUpdateSettings:
    """Tests for PUT /api/settings/billfree."""

    def test_configure_new_shop(self, client, unconfigured_shop):
        headers = {'X-Shop-Domain': unconfigured_shop.shopify_domain, 'Content-Type': 'application/json'}

        response = client.put('/api/settings/billfree', headers=headers, data=json.dumps({
            'auth_token': '  new-token  ',
            'enabled': True,
            'default_dial_code': '+971',
            'field_mappings': {'inv_no': 'order.name', 'bill_date': 'order.processedAt'}
        }))

        assert response.status_code == 200
        settings = response.get_json()['settings']
        assert settings['enabled'] is True
        assert settings['default_dial_code'] == '971'
        assert unconfigured_shop.billfree_auth_token == 'new-token'
        assert unconfigured_shop.is_billfree_configured is True

    def test_empty_token_rejected(self, client, configured_shop, shop_headers):
        response = client.put('/api/settings/billfree', headers=shop_headers, data=json.dumps({'auth_token': ' '}))

        assert response.status_code == 400
        assert configured_shop.billfree_auth_token == 'bf-test-token'

    def test_enable_without_token_rejected(self, client, unconfigured_shop):
        headers = {'X-Shop-Domain': unconfigured_shop.shopify_domain, 'Content-Type': 'application/json'}

        response = client.put('/api/settings/billfree', headers=headers, data=json.dumps({'enabled': True}))

        assert response.status_code == 400
        assert unconfigured_shop.is_billfree_configured is False

    def test_bad_dial_code(self, client, shop_headers):
        response = client.put('/api/settings/billfree', headers=shop_headers,
                              data=json.dumps({'default_dial_code': '91a'}))
        assert response.status_code == 400

    def test_bad_field_mappings(self, client, shop_headers):
        response = client.put('/api/settings/billfree', headers=shop_headers,
                              data=json.dumps({'field_mappings': {'inv_no': 5}}))
        assert response.status_code == 400

    def test_disable(self, client, configured_shop, shop_headers):
        response = client.put('/api/settings/billfree', headers=shop_headers, data=json.dumps({'enabled': False}))

        assert response.status_code == 200
        assert configured_shop.is_billfree_configured is False
        # token is kept so the merchant can re-enable without re-entering it
        assert configured_shop.billfree_auth_token == 'bf-test-token'

    def test_non_json_body(self, client, shop_headers):
        response = client.put('/api/settings/billfree', headers=shop_headers, data='[1, 2]')
        assert response.status_code == 400
