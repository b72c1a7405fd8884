from notification_dispatch.cli import main

main()
