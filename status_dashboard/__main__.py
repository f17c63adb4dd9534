from status_dashboard.server import main


main()
