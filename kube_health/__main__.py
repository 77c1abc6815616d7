from kube_health.cli import main

main()
