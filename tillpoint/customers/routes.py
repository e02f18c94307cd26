from decimal import Decimal, InvalidOperation

from flask import request, jsonify

from tillpoint import db
from tillpoint.customers import customers
from tillpoint.customers.models import Customer
from tillpoint.errors import ValidationError
from tillpoint.utils.persistence import unit_of_work, get_or_raise


def _validate(data, customer_id=None):
    errors = {}
    name = str(data.get('name') or '').strip()
    phone = str(data.get('phone') or '').strip()
    if not name:
        errors['name'] = 'Name is required.'
    if not phone:
        errors['phone'] = 'Phone is required.'
    elif Customer.query.filter(Customer.phone == phone, Customer.id != customer_id).first():
        errors['phone'] = 'Customer with this phone already exists.'

    balance = Decimal('0')
    if data.get('balance') not in (None, ''):
        try:
            balance = Decimal(str(data['balance']))
            if not balance.is_finite():
                raise InvalidOperation
        except InvalidOperation:
            errors['balance'] = 'Balance must be a valid number.'
    if errors:
        raise ValidationError(errors)
    return {'name': name, 'phone': phone, 'balance': balance}


@customers.route('/search')
def search():
    q = request.args.get('q', '').strip()
    if not q:
        return jsonify([])

    # Search by phone or name
    results = Customer.query.filter(
        (Customer.phone.ilike(f'%{q}%')) |
        (Customer.name.ilike(f'%{q}%'))
    ).order_by(Customer.name.asc()).limit(10).all()
    return jsonify([c.to_dict() for c in results])


@customers.route('/', methods=['POST'])
def create():
    fields = _validate(request.get_json(silent=True) or {})
    with unit_of_work():
        customer = Customer(**fields)
        db.session.add(customer)

    body = customer.to_dict()
    body['message'] = 'Customer created successfully'
    return jsonify(body), 201


@customers.route('/<int:customer_id>', methods=['PUT'])
def update(customer_id):
    customer = get_or_raise(Customer, customer_id)
    fields = _validate(request.get_json(silent=True) or {}, customer_id)
    with unit_of_work():
        for field, value in fields.items():
            setattr(customer, field, value)
    return jsonify(customer.to_dict())
