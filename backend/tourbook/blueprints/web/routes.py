"""Server-rendered pages. Every view runs the soft authentication check."""
from flask import Blueprint, g, render_template, request

from backend.tourbook.errors import NotFound
from backend.tourbook.middleware.auth import is_logged_in, protect
from backend.tourbook.repositories import bookings_repo, tours_repo
from backend.tourbook.services import users as users_service
from backend.tourbook.services.resources import guides_populate, tour_reviews_populate

web_bp = Blueprint('web', __name__)
web_bp.before_request(is_logged_in)

ALERTS = {
    'booking': "Your booking was successful! Please check your email for a confirmation. "
               "If your booking doesn't show up here immediately, please come back later.",
}


@web_bp.context_processor
def inject_alert():
    return {'alert': ALERTS.get(request.args.get('alert', ''))}


@web_bp.route('/')
def overview():
    tours = tours_repo.find_many({}, sort=[('_id', 1)])
    return render_template('overview.html', title='All Tours', tours=tours)


@web_bp.route('/tour/<slug>')
def tour_detail(slug):
    tour = tours_repo.find_by_slug(slug)
    if not tour:
        raise NotFound("There is no tour with that name.")
    tours_repo.populate([tour], (guides_populate, tour_reviews_populate))
    return render_template('tour.html', title=f"{tour['name']} Tour", tour=tour)


@web_bp.route('/login')
def login_page():
    return render_template('login.html', title='Log into your account')


@web_bp.route('/me')
@protect
def account():
    return render_template('account.html', title='Your account')


@web_bp.route('/my-tours')
@protect
def my_tours():
    bookings = bookings_repo.find_by_user(g.current_user['_id'])
    tour_ids = [b['tour'] for b in bookings]
    tours = tours_repo.find_many({'_id': {'$in': tour_ids}}) if tour_ids else []
    return render_template('overview.html', title='My Tours', tours=tours)


@web_bp.route('/submit-user-data', methods=['POST'])
@protect
def submit_user_data():
    updated = users_service.update_me(g.current_user, {
        'name': request.form.get('name'),
        'email': request.form.get('email'),
    })
    return render_template('account.html', title='Your account', user=updated)
