from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)


def _router():
    return current_app.extensions['tapsync']


@main.route('/')
def index():
    return jsonify({'message': 'Tapsync server: connect with Socket.IO to sync chat, presence and taps.'})


@main.route('/health')
def health():
    router = _router()
    return jsonify({
        'status': 'ok',
        'connections': len(router.registry),
        'flush_pending': router.persistence.pending if router.persistence else False,
    })


@main.route('/api/state')
def get_state():
    return jsonify(_router().snapshot())


@main.route('/api/taps')
def get_taps():
    router = _router()
    with router.lock:
        taps = router.state.get_taps()
    return jsonify(taps)
