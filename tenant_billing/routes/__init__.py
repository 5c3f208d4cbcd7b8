# Register all blueprints here
def register_blueprints(app):
    from .properties import properties_bp
    from .tenancies import tenancies_bp
    from .utilities import utilities_bp
    from .billing import billing_bp
    from .occupancy import occupancy_bp
    from .reports import reports_bp

    app.register_blueprint(properties_bp)
    app.register_blueprint(tenancies_bp)
    app.register_blueprint(utilities_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(occupancy_bp)
    app.register_blueprint(reports_bp)
